#!/usr/bin/env python3
"""
ReferralHub Backend Runner
==========================

Usage:
    python run_app.py                    # Development mode with auto-reload
    python run_app.py --mode prod        # Production mode
    python run_app.py --port 8001        # Custom port
    python run_app.py --host 127.0.0.1   # Custom host
    python run_app.py --init-db          # Create tables and seed badges, then exit
"""

import argparse
import asyncio
import os
import sys

def check_environment():
    """Report on the local configuration before starting"""
    print("\n🔍 Checking environment...")

    if os.path.exists(".env"):
        print("✅ .env file found")
    else:
        print("⚠️  .env file not found, using defaults")

    from app.core.config import settings

    if not settings.REFERRAL_ENCRYPTION_KEY:
        print("⚠️  REFERRAL_ENCRYPTION_KEY is not set; network referrals with payloads will fail")
    if settings.finance_gateway_configured:
        print("✅ Finance gateway configured")
    elif settings.FINANCE_GATEWAY_STUB_MODE:
        print("⚠️  Finance gateway in STUB mode: every deal verifies")
    else:
        print("⚠️  Finance gateway not configured; deals stay unverified")

    return True

def init_database():
    from app.core.database import init_db, close_db

    async def run():
        await init_db()
        await close_db()

    asyncio.run(run())
    print("✅ Database initialized")

def run_main_app(host="0.0.0.0", port=8000, reload=True, workers=1):
    """Run the FastAPI application"""
    print(f"\n🚀 Starting ReferralHub API on {host}:{port}")
    print(f"📖 API Docs: http://{host}:{port}/api/docs")
    print("\n" + "="*50)

    import uvicorn
    try:
        uvicorn.run(
            "app.main:app",
            host=host,
            port=port,
            reload=reload,
            workers=1 if reload else workers,
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")

def main():
    parser = argparse.ArgumentParser(
        description="ReferralHub Backend Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--mode",
        choices=["dev", "prod"],
        default="dev",
        help="Server mode (default: dev)"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")
    parser.add_argument("--init-db", action="store_true", help="Create tables and exit")

    args = parser.parse_args()

    if not check_environment():
        return 1

    if args.init_db:
        init_database()
        return 0

    from app.core.config import settings

    reload = not args.no_reload and args.mode != "prod"
    run_main_app(args.host, args.port, reload, settings.WORKERS)
    return 0

if __name__ == "__main__":
    sys.exit(main())
