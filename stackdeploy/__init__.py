"""stackdeploy - validated, state-aware CloudFormation nested-stack deployments."""

__version__ = "0.1.0"
