from aws_cdk import (
    Fn,
    aws_iam as iam,
    custom_resources as cr
)
from constructs import Construct
from ..shared.naming_conventions import NamingConventions
from typing import List, Dict, Any, Optional
import json
import hashlib
from datetime import datetime, timezone


REQUIRED_SPEC_FIELDS = ("tool_name", "description", "input_schema")


class BaseToolConstruct(Construct):
    """
    Registers a tool Lambda in the shared DynamoDB tool registry.

    Each tool spec becomes one registry item written by a custom resource
    (putItem on create and update, deleteItem on delete). When secret
    requirements are given, the keys are announced to the secret structure
    manager so they appear in the consolidated tool secret.

    Usage:
        BaseToolConstruct(
            self, "StagehandBrowserTool",
            tool_specs=[{tool spec dict}],
            lambda_function=stagehand_lambda,
            env_name="prod",
            secret_requirements={"stagehand_browser": ["OPENAI_API_KEY"]}
        )
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        tool_specs: List[Dict[str, Any]],
        lambda_function: Any,
        env_name: str = "prod",
        secret_requirements: Optional[Dict[str, List[str]]] = None,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.tool_specs = tool_specs
        self.lambda_function = lambda_function
        self.env_name = env_name
        self.secret_requirements = secret_requirements or {}

        self.tool_registry_table_name = Fn.import_value(
            NamingConventions.stack_export_name("Table", "ToolRegistry", env_name)
        )
        self.tool_registry_table_arn = Fn.import_value(
            NamingConventions.stack_export_name("TableArn", "ToolRegistry", env_name)
        )

        for i, tool_spec in enumerate(self.tool_specs):
            self._create_tool_registration(i, tool_spec)

        if self.secret_requirements:
            self.secret_structure_manager_arn = Fn.import_value(
                f"SecretStructureManagerArn-{env_name}"
            )
            self._register_secret_requirements()

    def _complete_spec(self, tool_spec: Dict[str, Any]) -> Dict[str, Any]:
        """Fill registry defaults and serialize nested values to JSON strings"""
        for field in REQUIRED_SPEC_FIELDS:
            if field not in tool_spec:
                raise ValueError(f"Tool spec missing required field: {field}")

        current_timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        spec = {
            "lambda_arn": self.lambda_function.function_arn,
            "lambda_function_name": self.lambda_function.function_name,
            "language": "python",
            "tags": [],
            "status": "active",
            "author": "system",
            "human_approval_required": False,
            "created_at": current_timestamp,
            "updated_at": current_timestamp,
        }
        spec.update(tool_spec)

        for key in ("input_schema", "response_schema", "tags"):
            if key in spec and not isinstance(spec[key], str):
                spec[key] = json.dumps(spec[key])
        return spec

    def _create_tool_registration(self, index: int, tool_spec: Dict[str, Any]):
        """Create a custom resource that keeps one registry item in sync"""
        spec = self._complete_spec(tool_spec)
        physical_id = cr.PhysicalResourceId.of(f"tool-{spec['tool_name']}-{self.env_name}")

        put_item = cr.AwsSdkCall(
            service="dynamodb",
            action="putItem",
            parameters={
                "TableName": self.tool_registry_table_name,
                "Item": {
                    key: {"BOOL": value} if isinstance(value, bool) else {"S": str(value)}
                    for key, value in spec.items()
                }
            },
            physical_resource_id=physical_id
        )

        cr.AwsCustomResource(
            self,
            f"RegisterTool{index}",
            on_create=put_item,
            on_update=put_item,
            on_delete=cr.AwsSdkCall(
                service="dynamodb",
                action="deleteItem",
                parameters={
                    "TableName": self.tool_registry_table_name,
                    "Key": {"tool_name": {"S": spec["tool_name"]}}
                },
                ignore_error_codes_matching=".*does not match.*|.*not found.*"
            ),
            policy=cr.AwsCustomResourcePolicy.from_statements([
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["dynamodb:PutItem", "dynamodb:UpdateItem", "dynamodb:DeleteItem"],
                    resources=[self.tool_registry_table_arn]
                )
            ])
        )

    def _register_secret_requirements(self):
        """Invoke the secret structure manager once per tool with its required keys"""
        descriptions = {spec["tool_name"]: spec.get("description", spec["tool_name"]) for spec in self.tool_specs}

        for tool_name, secret_keys in self.secret_requirements.items():
            description = f"Secrets for {descriptions.get(tool_name, tool_name)}"

            # The hash changes the payload, which re-runs on_update when keys change
            config_hash = hashlib.md5(
                json.dumps({"tool_name": tool_name, "secret_keys": secret_keys, "description": description}).encode()
            ).hexdigest()[:8]

            register_call = cr.AwsSdkCall(
                service="lambda",
                action="invoke",
                parameters={
                    "FunctionName": self.secret_structure_manager_arn,
                    "Payload": json.dumps({
                        "operation": "register_tool",
                        "tool_name": tool_name,
                        "secret_keys": secret_keys,
                        "description": description,
                        "config_hash": config_hash
                    })
                },
                physical_resource_id=cr.PhysicalResourceId.of(f"secret-reg-{tool_name}-{self.env_name}")
            )

            cr.AwsCustomResource(
                self,
                f"RegisterSecrets{tool_name.replace('-', '').replace('_', '')}",
                on_create=register_call,
                on_update=register_call,
                policy=cr.AwsCustomResourcePolicy.from_statements([
                    iam.PolicyStatement(
                        effect=iam.Effect.ALLOW,
                        actions=["lambda:InvokeFunction"],
                        resources=[self.secret_structure_manager_arn]
                    )
                ])
            )
