"""
Stagehand Browser Tool Stack - AI-driven browser automation with persistent sessions
"""

import json

from aws_cdk import (
    Stack,
    Duration,
    aws_lambda as _lambda,
    aws_lambda_python_alpha as _lambda_python,
    aws_iam as iam,
    aws_logs as logs,
    CfnOutput
)
from constructs import Construct
from ..shared.naming_conventions import NamingConventions
from .base_tool_construct import BaseToolConstruct


TOOL_NAME = "stagehand_browser"

OPERATIONS = [
    "navigate",
    "act",
    "extract",
    "observe",
    "agentExecute",
    "evaluate",
    "closeSession",
    "verifyCredentials",
]

MODEL_NAMES = [
    "openai/gpt-4.1",
    "openai/gpt-4o",
    "computer-use-preview",
    "anthropic/claude-3-7-sonnet-latest",
    "anthropic/claude-3-5-sonnet-latest",
    "claude-sonnet-4-20250514",
    "google/gemini-2.5-flash",
    "google/gemini-2.5-pro",
    "gemini-2.5-computer-use-preview-10-2025",
    "cerebras/llama-3.3-70b",
]

PROVIDER_SECRET_KEYS = ["OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "CEREBRAS_API_KEY"]
BROWSERBASE_SECRET_KEYS = ["BROWSERBASE_API_KEY", "BROWSERBASE_PROJECT_ID"]


class StagehandBrowserToolStack(Stack):
    """
    Stagehand Browser Tool Stack - Browser automation driven by natural language

    This stack deploys the Stagehand browser tool that provides:
    - Navigation, natural-language actions and observation of page elements
    - Structured extraction with schemas built from field lists, examples or JSON Schema
    - Multi-step autonomous agent execution
    - Browser sessions kept alive per workflow between invocations
    """

    def __init__(self, scope: Construct, construct_id: str, env_name: str = "prod",
                 stagehand_env: str = "BROWSERBASE", **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.env_name = env_name
        self.stagehand_env = stagehand_env
        self.secret_name = NamingConventions.tool_secrets_path(env_name)

        self._create_stagehand_lambda()
        self._register_tool()
        self._create_outputs()

    def _create_stagehand_lambda(self):
        """Create the Stagehand browser Lambda function"""

        self.stagehand_role = iam.Role(
            self, "StagehandBrowserRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ]
        )

        # Provider and Browserbase keys live in the consolidated tool secret
        self.stagehand_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["secretsmanager:GetSecretValue"],
                resources=[
                    f"arn:aws:secretsmanager:{self.region}:{self.account}:secret:{self.secret_name}*"
                ]
            )
        )

        self.stagehand_role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "xray:PutTraceSegments",
                    "xray:PutTelemetryRecords"
                ],
                resources=["*"]
            )
        )

        self.stagehand_lambda = _lambda_python.PythonFunction(
            self, "StagehandBrowserFunction",
            function_name=NamingConventions.tool_lambda_name("stagehand-browser", self.env_name),
            description="Stagehand browser automation with persistent per-workflow sessions",
            entry="lambda/tools/stagehand_browser",
            index="index.py",
            handler="lambda_handler",
            runtime=_lambda.Runtime.PYTHON_3_11,
            architecture=_lambda.Architecture.ARM_64,
            timeout=Duration.minutes(15),
            memory_size=2048,
            role=self.stagehand_role,
            tracing=_lambda.Tracing.ACTIVE,
            log_retention=logs.RetentionDays.ONE_WEEK,
            environment={
                "ENVIRONMENT": self.env_name,
                "CONSOLIDATED_SECRET_NAME": self.secret_name,
                "TOOL_SECRET_KEY": TOOL_NAME,
                "STAGEHAND_ENV": self.stagehand_env,
                "STAGEHAND_HEADLESS": "true",
                "SESSION_HEARTBEAT_SECONDS": "30",
                "SESSION_IDLE_TIMEOUT_SECONDS": "900",
                "OPERATION_TIMEOUT_SECONDS": "600",
                "POWERTOOLS_SERVICE_NAME": "stagehand-browser",
                "LOG_LEVEL": "INFO"
            }
        )

        self.function_name = self.stagehand_lambda.function_name

    def _register_tool(self):
        """Register the Stagehand browser tool in DynamoDB"""

        input_schema = {
            "type": "object",
            "properties": {
                "operation": {
                    "type": "string",
                    "enum": OPERATIONS,
                    "description": "The browser operation to perform (default: navigate)"
                },
                "url": {
                    "type": "string",
                    "description": "The URL to navigate to (navigate)"
                },
                "instruction": {
                    "type": "string",
                    "description": "Natural language instruction (act, extract, observe, agentExecute)"
                },
                "schemaSource": {
                    "type": "string",
                    "enum": ["fieldList", "example", "jsonSchema", "manual"],
                    "description": "How the extraction schema is defined (extract)"
                },
                "fields": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "fieldName": {"type": "string"},
                            "fieldType": {"type": "string", "enum": ["string", "number", "boolean", "array", "object"]},
                            "optional": {"type": "boolean"}
                        }
                    },
                    "description": "Fields to extract when schemaSource is fieldList"
                },
                "exampleJson": {
                    "type": "string",
                    "description": "Example JSON document the schema is inferred from"
                },
                "jsonSchema": {
                    "type": "string",
                    "description": "JSON Schema document describing the extracted data"
                },
                "manualModel": {
                    "type": "string",
                    "description": "Import path of a pydantic model, as module:ClassName"
                },
                "maxSteps": {
                    "type": "integer",
                    "description": "Maximum agent steps (agentExecute, default 20)"
                },
                "autoScreenshot": {
                    "type": "boolean",
                    "description": "Take a screenshot after each agent step (agentExecute)"
                },
                "javascriptCode": {
                    "type": "string",
                    "description": "JavaScript function expression to run in the page (evaluate)"
                },
                "evaluateArguments": {
                    "type": "string",
                    "description": "JSON object whose values are passed to the function in order (evaluate)"
                },
                "workflow_id": {
                    "type": "string",
                    "description": "Identifier of the workflow that owns the browser session"
                },
                "ai_provider": {
                    "type": "string",
                    "enum": ["openai", "anthropic", "google", "cerebras"],
                    "description": "AI provider for the model (default: openai)"
                },
                "options": {
                    "type": "object",
                    "properties": {
                        "modelName": {"type": "string", "enum": MODEL_NAMES},
                        "enableCaching": {"type": "boolean"},
                        "logMessages": {"type": "boolean"},
                        "verbose": {"type": "integer", "enum": [0, 1, 2]},
                        "domSettleTimeoutMs": {"type": "integer"},
                        "waitBetweenActions": {"type": "integer"}
                    },
                    "description": "Model and session options"
                }
            }
        }

        tool_specs = [{
            "tool_name": TOOL_NAME,
            "description": "Browser automation with natural language: navigate, act, extract structured data, observe elements, run multi-step agent tasks and evaluate JavaScript in a session kept per workflow",
            "input_schema": json.dumps(input_schema),
            "lambda_arn": self.stagehand_lambda.function_arn,
            "lambda_function_name": self.stagehand_lambda.function_name,
            "language": "python",
            "tags": json.dumps(["web", "browser", "automation", "extraction", "stagehand"]),
            "status": "active",
            "author": "StepFunctionsAgent",
            "human_approval_required": False,
            "version": "1.0.0",
            "response_schema": json.dumps({
                "type": "object",
                "properties": {
                    "operation": {"type": "string"},
                    "success": {"type": "boolean"},
                    "url": {"type": "string"},
                    "message": {"type": "string"},
                    "result": {},
                    "arguments": {"type": "object"},
                    "messages": {"type": "array", "items": {"type": "object"}},
                    "error": {"type": "string"}
                }
            })
        }]

        BaseToolConstruct(
            self, "StagehandBrowserTool",
            tool_specs=tool_specs,
            lambda_function=self.stagehand_lambda,
            env_name=self.env_name,
            secret_requirements={
                TOOL_NAME: PROVIDER_SECRET_KEYS + BROWSERBASE_SECRET_KEYS
            }
        )

    def _create_outputs(self):
        """Create stack outputs"""

        CfnOutput(
            self, "StagehandBrowserFunctionArn",
            value=self.stagehand_lambda.function_arn,
            description="ARN of the Stagehand browser Lambda function",
            export_name=f"StagehandBrowserFunctionArn-{self.env_name}"
        )

        CfnOutput(
            self, "StagehandBrowserFunctionName",
            value=self.stagehand_lambda.function_name,
            description="Name of the Stagehand browser Lambda function"
        )
