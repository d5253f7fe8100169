"""
Example: Resilient Upstream Calls

Demonstrates calling a flaky REST endpoint through Breakwater.
"""

import asyncio

from dotenv import load_dotenv
load_dotenv()

from breakwater import CircuitOpenError, ClientError, Config, UpstreamClient, UpstreamError


async def main():
    """
    Basic example showing:
    1. Initialize client from BREAKWATER_* environment variables
    2. Make a few calls
    3. Inspect breaker metrics
    """
    print("=== Breakwater Basic Example ===\n")

    # Step 1: Initialize client
    # Reads BREAKWATER_BASE_URL, BREAKWATER_FAILURE_THRESHOLD, ... from environment
    config = Config.from_env()
    if not config.base_url:
        config = config.with_updates(base_url="https://rest-testnet.onflow.org")

    async with UpstreamClient(config) as client:
        print(f"✅ Client initialized for {config.base_url}")

        # Step 2: Make a few calls
        for endpoint in ("/v1/blocks?height=sealed", "/v1/accounts/not-an-address"):
            try:
                response = await client.get(endpoint)
                print(f"✅ {endpoint} -> {response.status}")
            except CircuitOpenError as e:
                print(f"⏸️  Circuit open, retry in {e.retry_after:.1f}s")
            except ClientError as e:
                print(f"⚠️  Request rejected ({e.status}): {e.message}")
            except UpstreamError as e:
                print(f"❌ {e.kind.value} after {e.total_attempts} attempt(s): {e.message}")

        # Step 3: Inspect metrics
        metrics = client.get_metrics()
        print(f"\n📊 State: {metrics.state.value}")
        print(f"   Requests: {metrics.total_requests} (success rate {metrics.success_rate:.0%})")
        print(f"   Avg latency: {metrics.average_response_time * 1000:.1f}ms")

    print("\n=== Example Complete ===")


if __name__ == "__main__":
    asyncio.run(main())
