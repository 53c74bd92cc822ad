import uvicorn
import argparse
import os

from credvault.config import configure_logging, get_settings


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="credvault local service")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8334, help="Port to run the service on")
    parser.add_argument("--home", type=str, default=None, help="Vault directory")

    args = parser.parse_args()

    # Settings are read from the environment on first use
    if args.home:
        os.environ["CREDVAULT_HOME"] = args.home

    settings = get_settings()
    configure_logging(settings.log_level)

    from credvault.main import app

    print(f"Starting credvault on http://{args.host}:{args.port}")
    print(f"Vault: {settings.vault_path}")

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=False,
    )
