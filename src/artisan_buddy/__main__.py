import asyncio
import sys

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from artisan_buddy.app_config import load_json_config, parse_app_config, resolve_runtime_env
from artisan_buddy.bootstrap import bootstrap_runtime
from artisan_buddy.console import ChatConsole


async def run_console(runtime) -> None:
    console = ChatConsole(runtime, user_id="console")
    try:
        await console.run()
    finally:
        runtime.close()


def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    runtime = bootstrap_runtime(app, env)

    if not env.provider_api_key:
        logger.error(f"{env.provider_env_var} environment variable is required.")
        runtime.close()
        sys.exit(1)

    logger.info(f"Artisan Buddy ready (provider={app.provider_name}, model={app.model})")

    if len(sys.argv) > 1 and sys.argv[1] == "serve":
        from artisan_buddy.api import create_app

        try:
            uvicorn.run(create_app(runtime), host=app.host, port=app.port, log_config=None)
        finally:
            runtime.close()
        return

    asyncio.run(run_console(runtime))


if __name__ == "__main__":
    main()
