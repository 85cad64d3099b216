"""Stack parameter and artifact location resolution."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from stackdeploy.aws.base import ParameterStore
from stackdeploy.aws.s3 import ArtifactLocation, parse_artifact_uri
from stackdeploy.config.settings import StackConfig
from stackdeploy.errors import InfraError
from stackdeploy.utils.logging import get_logger
from stackdeploy.utils.result import Err, Ok, Result, collect_results

logger = get_logger("pipeline.parameters")


async def resolve_artifact_location(
    stack: StackConfig,
    store: Optional[ParameterStore],
    artifact_uri: Optional[str] = None,
) -> Result[ArtifactLocation, str]:
    """
    Where to publish artifacts.

    An explicit ``s3://bucket[/prefix]`` wins; otherwise the bucket name is
    read from the configured SSM parameter.
    """
    if artifact_uri:
        return parse_artifact_uri(artifact_uri)

    if store is None:
        return Err("No artifact URI given and no parameter store to look up the bucket")

    parameter = stack.expand(stack.bucket_parameter)
    try:
        bucket = await asyncio.to_thread(store.get_parameter, parameter)
    except InfraError as e:
        return Err(f"Cannot read bucket name from SSM parameter {parameter}: {e} ({e.remediation})")

    if not bucket:
        return Err(f"SSM parameter {parameter} is empty")

    return Ok(ArtifactLocation(bucket=bucket.strip(), prefix=stack.artifact_prefix))


class ParameterResolver:
    """
    Turns configured parameter sources into stack parameter values.

    Values are never logged, since secrets pass through here.
    """

    def __init__(
        self,
        store: ParameterStore,
        stack: StackConfig,
        log: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.store = store
        self.stack = stack
        self.log = log or logger

    async def _resolve_one(self, name: str, source: str) -> Result[tuple[str, str], str]:
        reference = self.stack.expand(source)
        try:
            value = await asyncio.to_thread(self.store.lookup, reference)
        except InfraError as e:
            self.log.error("parameter_unresolved", parameter=name, error_class=e.error_class.value)
            return Err(f"{name} ({reference}): {e}")
        return Ok((name, value))

    async def resolve(self, bucket: Optional[str] = None) -> Result[dict[str, str], list[str]]:
        """
        Resolve every configured parameter.

        Args:
            bucket: Artifact bucket, passed as the bucket template parameter
                unless configured explicitly

        Returns:
            Ok(name -> value) or Err(every failure message)
        """
        results = await asyncio.gather(*(
            self._resolve_one(name, source)
            for name, source in self.stack.parameters.items()
        ))

        collected = collect_results(list(results))
        if collected.is_err():
            return collected

        parameters = dict(collected.unwrap())
        if bucket and self.stack.bucket_template_parameter:
            parameters.setdefault(self.stack.bucket_template_parameter, bucket)

        self.log.info("parameters_resolved", parameters=sorted(parameters))
        return Ok(parameters)
