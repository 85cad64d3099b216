"""SSM Parameter Store and Secrets Manager adapter."""

from __future__ import annotations

from typing import Any

from stackdeploy.aws.base import ParameterStore
from stackdeploy.aws.errors import translate_errors
from stackdeploy.errors import ErrorClass, PermanentInfraError


class AwsParameterStore(ParameterStore):
    """ParameterStore reading SSM parameters and Secrets Manager secrets."""

    def __init__(self, ssm_client: Any, secrets_client: Any) -> None:
        self.ssm = ssm_client
        self.secrets = secrets_client

    def get_parameter(self, name: str) -> str:
        with translate_errors("GetParameter"):
            response = self.ssm.get_parameter(Name=name, WithDecryption=True)
        return response["Parameter"]["Value"]

    def get_secret(self, secret_id: str) -> str:
        with translate_errors("GetSecretValue"):
            response = self.secrets.get_secret_value(SecretId=secret_id)

        if "SecretString" not in response:
            raise PermanentInfraError(
                ErrorClass.VALIDATION,
                f"Secret {secret_id} has no string value",
                operation="GetSecretValue",
            )
        return response["SecretString"]
