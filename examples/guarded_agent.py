"""
Example: Guarded Agent Actions

Walks an agent through the decide -> pay -> run flow against the mock
email provider: quote, pay, replay, policy violation, budget exhaustion.
"""

import asyncio
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from spendguard import (  # noqa: E402
    Decision,
    SpendGuard,
    create_mock_payment,
)

PAYLOAD = {
    "to": "new-user@example.com",
    "subject": "Welcome aboard",
    "body": "Thanks for signing up!",
}


async def send_welcome(guard: SpendGuard, run_id: str) -> None:
    """Unpaid attempt, then pay the quoted terms and retry."""
    decision = await guard.execute("email", "send", "welcome_flow", PAYLOAD, run_id=run_id)
    print(f"   {decision.log_id}: {decision.decision.value} ({decision.reason})")

    if decision.decision != Decision.PAYMENT_REQUIRED:
        return

    requirement = decision.payment_requirement
    print(f"   Terms: {requirement.price} {requirement.asset} on {requirement.network}")

    _, header = create_mock_payment(requirement)
    decision = await guard.execute(
        "email", "send", "welcome_flow", PAYLOAD, payment_proof=header, run_id=run_id
    )
    print(f"   {decision.log_id}: {decision.decision.value} ({decision.reason})")
    if decision.approved:
        print(f"   Sent {decision.provider_response['id']}")


async def main():
    print("=== SpendGuard Guarded Agent Example ===\n")

    async with SpendGuard(load_env=True) as guard:
        await guard.clear_all()

        # ========================================
        # Example 1: Normal flow
        # ========================================
        print("--- Example 1: Quote, pay, run ---")
        await send_welcome(guard, run_id="demo-1")
        budget = await guard.get_budget()
        print(f"   Budget remaining: {budget.remaining} / {budget.daily_limit}")

        # ========================================
        # Example 2: Replay attack
        # ========================================
        print("\n--- Example 2: Replay attack ---")
        quoted = await guard.execute("email", "send", "welcome_flow", PAYLOAD)
        _, header = create_mock_payment(quoted.payment_requirement)
        await guard.execute("email", "send", "welcome_flow", PAYLOAD, payment_proof=header)
        replay = await guard.execute("email", "send", "welcome_flow", PAYLOAD, payment_proof=header)
        print(f"   Reused proof: {replay.decision.value} ({replay.reason})")

        # ========================================
        # Example 3: Policy violation
        # ========================================
        print("\n--- Example 3: Provider not on the allowlist ---")
        denied = await guard.execute("sms", "send", "welcome_flow", PAYLOAD)
        print(f"   {denied.decision.value} ({denied.reason})")

        # ========================================
        # Example 4: Budget exhaustion
        # ========================================
        print("\n--- Example 4: Budget exhaustion ---")
        await guard.set_daily_limit(Decimal("0.002"))
        for i in range(3):
            await send_welcome(guard, run_id=f"budget-{i}")

        stats = await guard.get_log_stats()
        print(f"\nAudit: {stats.to_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
