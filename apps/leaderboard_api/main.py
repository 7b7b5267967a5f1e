import argparse, asyncio, json
import uvicorn
from packages.config.constants import DEFAULT_ENV
from packages.config.env import load_cfg
from packages.config.logging import setup_logging
from packages.config.settings import load_settings
from packages.chain.rpc_status import check_all
from apps.leaderboard_api.server import build_service, create_app

log = setup_logging()

def _load(args):
    cfg = load_cfg(args.env)
    settings = load_settings(args.config or cfg.settings_path)
    if getattr(args, "strategy", None):
        settings = settings.model_copy(update={"strategy": args.strategy})
    return cfg, settings

def run_serve(args):
    cfg, settings = _load(args)
    log.info("=== LEADERBOARD API ===", host=args.host, port=args.port, strategy=settings.strategy)
    uvicorn.run(create_app(cfg, settings), host=args.host, port=args.port, log_level="warning")

async def run_snapshot(args):
    cfg, settings = _load(args)
    log.info("=== LEADERBOARD SNAPSHOT ===", strategy=settings.strategy, force=args.force)
    service, closers = await build_service(cfg, settings)
    try:
        # local CLI runs are trusted: force skips the cache without a secret
        snap = await (service.refresh() if args.force else service.get())
    finally:
        for r in closers:
            await r.aclose()
    print(json.dumps(snap.to_payload(), indent=2))

async def run_rpc_status(args):
    cfg, _ = _load(args)
    statuses = await check_all(cfg.rpc_candidates())
    for st in statuses:
        print(f"{st.status:<5} {st.latency_ms:>6} ms  block {st.block_height:<12} {st.url}")

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--env", default=DEFAULT_ENV, help="dotenv file with endpoints and secrets")
    ap.add_argument("--config", default=None, help="leaderboard yaml (default: $LEADERBOARD_CONFIG)")
    sub = ap.add_subparsers(dest="cmd")

    s = sub.add_parser("serve")
    s.add_argument("--host", default="0.0.0.0")
    s.add_argument("--port", type=int, default=8000)
    s.add_argument("--strategy", choices=["enumeration", "logs", "enumeration+logs"])
    s.set_defaults(func=run_serve)

    snap = sub.add_parser("snapshot")
    snap.add_argument("--force", action="store_true", help="bypass the cache")
    snap.add_argument("--strategy", choices=["enumeration", "logs", "enumeration+logs"])
    snap.set_defaults(func=lambda args: asyncio.run(run_snapshot(args)))

    rs = sub.add_parser("rpc-status")
    rs.set_defaults(func=lambda args: asyncio.run(run_rpc_status(args)))

    args = ap.parse_args()
    if not getattr(args, "func", None):
        ap.print_help(); return
    args.func(args)

if __name__ == "__main__":
    main()
