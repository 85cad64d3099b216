"""S3 artifact store adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from stackdeploy.aws.base import ObjectInfo, ObjectStore
from stackdeploy.aws.errors import error_code, to_infra_error, translate_errors
from stackdeploy.errors import ErrorClass, PermanentInfraError
from stackdeploy.utils.result import Err, Ok, Result

S3_SCHEME = "s3://"


@dataclass(frozen=True)
class ArtifactLocation:
    """Bucket and key prefix artifacts are published under."""

    bucket: str
    prefix: str = ""

    def key_for(self, name: str, sub_prefix: str = "") -> str:
        """Join prefix, optional sub-prefix and file name into an object key."""
        parts = [p.strip("/") for p in (self.prefix, sub_prefix) if p and p.strip("/")]
        return "/".join([*parts, name])

    def __str__(self) -> str:
        if self.prefix:
            return f"{S3_SCHEME}{self.bucket}/{self.prefix.strip('/')}"
        return f"{S3_SCHEME}{self.bucket}"


def parse_artifact_uri(uri: str) -> Result[ArtifactLocation, str]:
    """
    Parse ``s3://bucket[/prefix]``.

    Returns:
        Ok(ArtifactLocation) or Err(message)
    """
    if not uri.startswith(S3_SCHEME):
        return Err(f"Artifact URI must start with {S3_SCHEME}: {uri}")

    bucket, _, prefix = uri[len(S3_SCHEME):].partition("/")
    if not bucket:
        return Err(f"Artifact URI has no bucket: {uri}")

    return Ok(ArtifactLocation(bucket=bucket, prefix=prefix.strip("/")))


class S3ObjectStore(ObjectStore):
    """ObjectStore backed by a boto3 S3 client."""

    def __init__(self, client: Any, bucket: str, region: str) -> None:
        """
        Initialize the store.

        Args:
            client: boto3 ``s3`` client
            bucket: Artifact bucket name
            region: Bucket region, used to build object URLs
        """
        self.client = client
        self._bucket = bucket
        self.region = region

    @property
    def bucket(self) -> str:
        return self._bucket

    def put(
        self,
        key: str,
        body: bytes,
        content_type: str = "text/yaml",
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        with translate_errors("PutObject"):
            self.client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {},
            )

    def head(self, key: str) -> Optional[ObjectInfo]:
        try:
            response = self.client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if error_code(e) in ("404", "NoSuchKey", "NotFound"):
                return None
            raise to_infra_error(e, "HeadObject") from e
        except BotoCoreError as e:
            raise to_infra_error(e, "HeadObject") from e

        return ObjectInfo(
            size=int(response["ContentLength"]),
            last_modified=response.get("LastModified"),
        )

    def head_bucket(self) -> None:
        try:
            self.client.head_bucket(Bucket=self._bucket)
        except ClientError as e:
            # HeadBucket has no body, so only the status code is available
            if error_code(e) in ("404", "NoSuchBucket", "NotFound"):
                raise PermanentInfraError(
                    ErrorClass.MISSING_BUCKET,
                    f"Bucket {self._bucket} does not exist",
                    code="NoSuchBucket",
                    operation="HeadBucket",
                ) from e
            raise to_infra_error(e, "HeadBucket") from e
        except BotoCoreError as e:
            raise to_infra_error(e, "HeadBucket") from e

    def url_for(self, key: str) -> str:
        if self.region == "us-east-1":
            return f"https://{self._bucket}.s3.amazonaws.com/{key}"
        return f"https://{self._bucket}.s3.{self.region}.amazonaws.com/{key}"
