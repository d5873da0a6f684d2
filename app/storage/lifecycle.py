"""Bucket lifecycle: connectivity, bucket existence, public policy, self-test."""

import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from app.core.logging_config import get_logger
from app.storage.protocol import ObjectStore


logger = get_logger(__name__)


class LifecycleState(str, Enum):
    """Startup progress. Failure stops advancement without rolling back."""

    UNCHECKED = "unchecked"
    CONNECTIVITY_VERIFIED = "connectivity_verified"
    BUCKET_ENSURED = "bucket_ensured"
    POLICY_ATTEMPTED = "policy_attempted"
    SELF_TESTED = "self_tested"


def public_read_policy(bucket: str, prefix: str = "public/") -> Dict[str, Any]:
    """Anonymous s3:GetObject on ``<bucket>/<prefix>*`` and nothing else."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/{prefix}*"],
            }
        ],
    }


class BucketLifecycleManager:
    """Runs the startup sequence once and records how far it got.

    Steps run in order and each one only after the previous succeeded:

    1. Connectivity: list buckets.
    2. Bucket: create it in the configured region when absent.
    3. Policy: apply the public-read policy when the bucket was just created
       or has none. A failure here is a warning and does not stop step 4.
    4. Self-test: write then delete ``<self_test_prefix><epoch_ms>.txt``.

    ``initialize()`` never raises; callers log the boolean and keep serving.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        region: Optional[str] = None,
        public_prefix: str = "public/",
        self_test_prefix: str = "_test_/",
    ):
        self.store = store
        self.bucket = bucket
        self.region = region
        self.public_prefix = public_prefix
        self.self_test_prefix = self_test_prefix
        self.state = LifecycleState.UNCHECKED
        self.errors: List[str] = []
        self.bucket_created = False
        self.policy_applied = False

    def _fail(self, step: str, exc: BaseException) -> bool:
        message = f"{step}: {type(exc).__name__}: {exc}"
        self.errors.append(message)
        logger.error(
            "storage_lifecycle_step_failed",
            step=step,
            bucket=self.bucket,
            state=self.state.value,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return False

    async def initialize(self) -> bool:
        """Run every step. True when the self-test passed."""
        self.state = LifecycleState.UNCHECKED
        self.errors = []

        try:
            buckets = await self.store.list_buckets()
        except Exception as exc:
            return self._fail("connectivity", exc)
        self.state = LifecycleState.CONNECTIVITY_VERIFIED
        logger.info("storage_connectivity_verified", bucket_count=len(buckets))

        try:
            if not await self.store.bucket_exists(self.bucket):
                await self.store.make_bucket(self.bucket, self.region)
                self.bucket_created = True
                logger.info("storage_bucket_created", bucket=self.bucket, region=self.region)
        except Exception as exc:
            return self._fail("bucket", exc)
        self.state = LifecycleState.BUCKET_ENSURED

        await self._apply_policy()
        self.state = LifecycleState.POLICY_ATTEMPTED

        test_key = f"{self.self_test_prefix}{time.time_ns() // 1_000_000}.txt"
        try:
            await self.store.put_object(
                self.bucket,
                test_key,
                b"storage self-test",
                metadata={"content-type": "text/plain"},
            )
            await self.store.remove_object(self.bucket, test_key)
        except Exception as exc:
            return self._fail("self_test", exc)
        self.state = LifecycleState.SELF_TESTED

        logger.info(
            "storage_lifecycle_completed",
            bucket=self.bucket,
            bucket_created=self.bucket_created,
            policy_applied=self.policy_applied,
        )
        return True

    async def _apply_policy(self) -> None:
        try:
            if not self.bucket_created:
                existing = await self.store.get_bucket_policy(self.bucket)
                if existing:
                    logger.debug("storage_bucket_policy_present", bucket=self.bucket)
                    return
            await self.store.set_bucket_policy(
                self.bucket, json.dumps(public_read_policy(self.bucket, self.public_prefix))
            )
            self.policy_applied = True
        except Exception as exc:
            # Bucket stays usable; only public URLs are affected
            self.errors.append(f"policy: {type(exc).__name__}: {exc}")
            logger.warning(
                "storage_bucket_policy_failed",
                bucket=self.bucket,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def status(self) -> Dict[str, Any]:
        return {
            "bucket": self.bucket,
            "state": self.state.value,
            "ready": self.state is LifecycleState.SELF_TESTED,
            "bucket_created": self.bucket_created,
            "policy_applied": self.policy_applied,
            "errors": list(self.errors),
        }
