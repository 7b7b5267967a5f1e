from typing import Dict, Optional
from .models import LeaderboardEntry, LeaderboardSnapshot, Reconstruction, now_ms

TOP_N = 5

def share_bps(amount: int, total: int) -> int:
    return amount * 10_000 // total if total else 0

def rank(balances: Dict[str, int], top_n: int = TOP_N) -> list:
    """Descending by amount; equal amounts keep discovery order (stable sort)."""
    live = [(a, v) for a, v in balances.items() if v > 0]
    live.sort(key=lambda kv: kv[1], reverse=True)
    return live[:top_n]

def build_snapshot(rec: Reconstruction, top_n: int = TOP_N, generated_at: Optional[int] = None) -> LeaderboardSnapshot:
    total = sum(v for v in rec.balances.values() if v > 0)
    entries = [LeaderboardEntry(address=a, amount=v, share_bps=share_bps(v, total)) for a, v in rank(rec.balances, top_n)]
    return LeaderboardSnapshot(
        entries=entries,
        total_staked=total,
        participant_count=sum(1 for v in rec.balances.values() if v > 0),
        generated_at=now_ms() if generated_at is None else generated_at,
        complete=rec.complete,
        strategy=rec.strategy,
    )
