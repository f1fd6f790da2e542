import asyncio
import contextlib
import os
import sys

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from anyio import create_task_group

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.data_layer import DataLayer, MemoryStore
from coreason_oidc.exceptions import CoreasonOIDCError
from coreason_oidc.manager import AuthenticationManager


async def main() -> None:
    """
    Demonstrates the authorization code flow with PKCE.
    Includes:
    - Metadata discovery with fallback endpoints (never raises)
    - TaskGroup for concurrency (resolution runs once per context)
    - OpenTelemetry instrumentation (auto-applied to the internal client)
    """
    print(">>> Starting Authorization Code Flow Example")

    config = AuthClientConfig(
        client_id=os.getenv("OIDC_CLIENT_ID", "my-client"),
        base_url=os.getenv("OIDC_BASE_URL", "https://auth.example.com/t/acme"),
        sign_in_redirect_url="https://app.example.com/callback",
        scope=["profile", "email"],
        http_timeout=5.0,
    )

    async with AuthenticationManager(DataLayer(MemoryStore())) as manager:
        await manager.initialize(config)

        print(">>> Resolving provider metadata from concurrent tasks...")
        async with create_task_group() as tg:
            for _ in range(3):
                tg.start_soon(manager.get_oidc_provider_metadata)

        print(f">>> Metadata state: {await manager.get_metadata_state()}")
        print(f">>> Authorization URL: {await manager.build_authorization_url({'login_hint': 'alice'})}")

        code = input("Paste the 'code' query parameter from the redirect: ").strip()
        try:
            tokens = await manager.exchange_authorization_code(code)
            print(f">>> Signed in. Token type: {tokens.token_type}, expires in: {tokens.expires_in}")
            print(f">>> Sign-out URL: {await manager.sign_out()}")
        except CoreasonOIDCError as e:
            print(f">>> Exchange failed: {e}")


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
