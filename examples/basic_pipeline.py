"""
Example: Basic Pipeline Flow

Submits a few jobs, lets one fail, and shows the refund in the audit trail.
"""

import asyncio

from creditpipe import (
    Config,
    CreditPipe,
    InMemoryBlobStore,
    InsufficientCreditsError,
    Role,
    Transformer,
    TransformResult,
)


class UppercaseTransformer(Transformer):
    """Toy transformation: uppercases text inputs, rejects empty ones."""

    def __init__(self, blob_store):
        self.blob_store = blob_store

    async def process(self, data, params, output_key):
        if not data:
            return TransformResult.failure("empty input")
        await self.blob_store.put(data.upper(), output_key)
        return TransformResult.success(output_key)


async def main():
    print("=== creditpipe Basic Example ===\n")

    blob_store = InMemoryBlobStore({"uploads/hello.txt": b"hello", "uploads/empty.txt": b""})
    config = Config(starter_credits=2)

    async with CreditPipe(
        transformer=UppercaseTransformer(blob_store),
        blob_store=blob_store,
        config=config,
    ) as pipe:
        # Step 1: two paid jobs, one of which fails
        ok = await pipe.submit_job("alice", Role.STANDARD, "uploads/hello.txt", {"format": "txt"})
        bad = await pipe.submit_job("alice", Role.STANDARD, "uploads/empty.txt")
        print(f"Submitted jobs {ok.id} and {bad.id} (status: {ok.status.value})")

        await pipe.wait_for_jobs()

        for job_id in (ok.id, bad.id):
            job = await pipe.get_job(job_id, "alice", Role.STANDARD)
            print(f"  Job {job.id}: {job.status.value} -> {job.result}")

        # Step 2: the failed job was refunded
        account = await pipe.get_credits("alice")
        print(f"\nBalance after refund: {account.balance}")
        for txn in await pipe.get_transactions("alice", "alice", Role.STANDARD):
            print(f"  #{txn.id} {txn.kind.value:<12} {txn.amount:>3}  {txn.description}")

        # Step 3: spend the last credit, then get rejected
        await pipe.submit_job("alice", Role.STANDARD, "uploads/hello.txt")
        await pipe.wait_for_jobs()
        try:
            await pipe.submit_job("alice", Role.STANDARD, "uploads/hello.txt")
        except InsufficientCreditsError as e:
            print(f"\nRejected: {e}")

        # Step 4: an administrator tops the account up
        account = await pipe.grant_credits("alice", 5, granted_by="root", granter_role=Role.PRIVILEGED)
        print(f"Balance after grant: {account.balance}")

        stats = await pipe.processing_stats()
        print(f"\nProcessed {stats.total_processed} job(s), success rate {stats.success_rate:.0f}%")


if __name__ == "__main__":
    asyncio.run(main())
