"""Upload validated documents and verify what landed."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import structlog

from stackdeploy.aws.base import ObjectStore
from stackdeploy.aws.s3 import ArtifactLocation
from stackdeploy.errors import ErrorClass, InfraError, is_transient, remediation_for
from stackdeploy.models.documents import TemplateDocument
from stackdeploy.models.findings import (
    FindingCategory,
    Severity,
    ValidationFinding,
)
from stackdeploy.models.publish import PublishRecord, PublishReport
from stackdeploy.publisher.probe import ReachabilityProbe
from stackdeploy.utils.logging import get_logger
from stackdeploy.utils.retry import RetryPolicy, SleepFn, run_with_retry

logger = get_logger("publisher")

CONTENT_TYPE = "text/yaml"


class ArtifactPublisher:
    """
    Publishes a document set to the object store.

    Nested documents are uploaded and verified first, concurrently. Main is
    uploaded last and only if every Nested document verified, so the
    provisioning service never reads a Main whose nested documents are stale.
    """

    def __init__(
        self,
        store: ObjectStore,
        location: ArtifactLocation,
        application_name: str,
        nested_prefix: str = "templates",
        retry_policy: Optional[RetryPolicy] = None,
        probe: Optional[ReachabilityProbe] = None,
        parallelism: int = 4,
        sleep: SleepFn = asyncio.sleep,
        log: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        """
        Initialize the publisher.

        Args:
            store: Object store for the artifact bucket
            location: Bucket and key prefix
            application_name: Stored as object metadata
            nested_prefix: Sub-prefix for Nested documents
            retry_policy: Retry policy for transient upload failures
            probe: Reachability probe; None skips probing
            parallelism: Concurrent Nested uploads
            sleep: Sleep used between retries
            log: Logger bound to the run context
        """
        self.store = store
        self.location = location
        self.application_name = application_name
        self.nested_prefix = nested_prefix
        self.retry_policy = retry_policy or RetryPolicy()
        self.probe = probe
        self.parallelism = parallelism
        self.sleep = sleep
        self.log = log or logger

    def key_for(self, document: TemplateDocument) -> str:
        """Object key: Main at the prefix root, Nested under the nested prefix."""
        if document.is_main:
            return self.location.key_for(document.name)
        return self.location.key_for(document.name, self.nested_prefix)

    async def publish(self, documents: list[TemplateDocument]) -> PublishReport:
        """
        Upload and verify every document.

        Args:
            documents: Validated document set

        Returns:
            PublishReport, passed only if every record is verified
        """
        main_documents = [d for d in documents if d.is_main]
        nested_documents = [d for d in documents if not d.is_main]

        self.log.info(
            "publish_started",
            bucket=self.store.bucket,
            prefix=self.location.prefix,
            documents=len(documents),
        )

        bucket_check = await run_with_retry(
            lambda: asyncio.to_thread(self.store.head_bucket),
            self.retry_policy,
            is_transient,
            sleep=self.sleep,
            logger=self.log.bind(bucket=self.store.bucket),
        )
        if not bucket_check.succeeded:
            error = bucket_check.error
            if not isinstance(error, InfraError):
                raise error
            self.log.error(
                "bucket_unavailable",
                bucket=self.store.bucket,
                attempts=bucket_check.attempts,
                error=str(error),
            )
            # No document upload was attempted
            return PublishReport(records=tuple(
                self._failed_record(d, attempts=0, error=error) for d in documents
            ))

        semaphore = asyncio.Semaphore(self.parallelism)

        async def _bounded(document: TemplateDocument) -> PublishRecord:
            async with semaphore:
                return await self.publish_one(document)

        nested_records = list(await asyncio.gather(*(_bounded(d) for d in nested_documents)))

        main_records = []
        if all(r.verified for r in nested_records):
            for document in main_documents:
                main_records.append(await self.publish_one(document))
        else:
            self.log.error(
                "main_upload_skipped",
                failed=[r.document for r in nested_records if not r.verified],
            )
            for document in main_documents:
                main_records.append(PublishRecord(
                    document=document.name,
                    local_size=len(document.content_bytes),
                    remote_size=None,
                    remote_location=self.store.url_for(self.key_for(document)),
                    verified=False,
                    attempts=0,
                    key=self.key_for(document),
                    error_message="not uploaded because a nested document failed to publish",
                ))

        records, warnings = await self._probe(nested_records + main_records)

        report = PublishReport(
            records=tuple(records),
            warnings=tuple(warnings),
            main_location=main_records[0].remote_location if main_records and main_records[0].verified else None,
        )

        self.log.info(
            "publish_completed",
            passed=report.passed,
            verified=sum(1 for r in records if r.verified),
            total=len(records),
        )
        return report

    async def publish_one(self, document: TemplateDocument) -> PublishRecord:
        """Upload one document with retries, then verify it by size."""
        key = self.key_for(document)
        body = document.content_bytes
        local_size = len(body)
        metadata = {
            "application": self.application_name,
            "upload-date": datetime.now(timezone.utc).isoformat(),
            "file-size": str(local_size),
        }
        log = self.log.bind(document=document.name, key=key)
        log.info("upload_started", size=local_size)

        outcome = await run_with_retry(
            lambda: asyncio.to_thread(self.store.put, key, body, CONTENT_TYPE, metadata),
            self.retry_policy,
            is_transient,
            sleep=self.sleep,
            logger=log,
        )
        if not outcome.succeeded:
            log.error("upload_failed", attempts=outcome.attempts, error=str(outcome.error))
            return self._failed_record(document, outcome.attempts, outcome.error)

        try:
            info = await asyncio.to_thread(self.store.head, key)
        except InfraError as e:
            log.error("verification_failed", error=str(e))
            return self._failed_record(document, outcome.attempts, e)

        url = self.store.url_for(key)

        if info is None:
            log.error("verification_failed", error="object not found after upload")
            return PublishRecord(
                document=document.name,
                local_size=local_size,
                remote_size=None,
                remote_location=url,
                verified=False,
                attempts=outcome.attempts,
                key=key,
                error_class=ErrorClass.NOT_FOUND,
                error_message="object not found after upload",
                remediation=remediation_for(ErrorClass.NOT_FOUND),
            )

        verified = info.size == local_size
        if verified:
            log.info("upload_verified", attempts=outcome.attempts, remote_size=info.size)
        else:
            log.error("size_mismatch", local_size=local_size, remote_size=info.size)

        return PublishRecord(
            document=document.name,
            local_size=local_size,
            remote_size=info.size,
            remote_location=url,
            verified=verified,
            attempts=outcome.attempts,
            key=key,
            error_message=None if verified else "uploaded size does not match local size",
            last_modified=info.last_modified,
        )

    def _failed_record(
        self,
        document: TemplateDocument,
        attempts: int,
        error: Optional[BaseException],
    ) -> PublishRecord:
        key = self.key_for(document)
        error_class = error.error_class if isinstance(error, InfraError) else ErrorClass.UNKNOWN
        return PublishRecord(
            document=document.name,
            local_size=len(document.content_bytes),
            remote_size=None,
            remote_location=self.store.url_for(key),
            verified=False,
            attempts=attempts,
            key=key,
            error_class=error_class,
            error_message=str(error) if error else None,
            remediation=remediation_for(error_class),
        )

    async def _probe(
        self,
        records: list[PublishRecord],
    ) -> tuple[list[PublishRecord], list[ValidationFinding]]:
        """Probe verified records; unreachable URLs become warnings."""
        if self.probe is None:
            return records, []

        verified = [r for r in records if r.verified]
        results = await asyncio.gather(*(self.probe.check(r.remote_location) for r in verified))

        warnings = []
        reachable_by_document = {}
        for record, reachable in zip(verified, results):
            reachable_by_document[record.document] = reachable
            if not reachable:
                warnings.append(ValidationFinding(
                    document_name=record.document,
                    severity=Severity.WARNING,
                    category=FindingCategory.STRUCTURE,
                    message=f"{record.remote_location} did not answer HEAD with 200",
                    remediation="Expected for private buckets; CloudFormation reads with your credentials",
                ))

        probed = [
            replace(r, reachable=reachable_by_document[r.document])
            if r.document in reachable_by_document else r
            for r in records
        ]
        return probed, warnings
