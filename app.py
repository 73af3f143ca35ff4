#!/usr/bin/env python3
"""
Stagehand Browser Tool App

Deploys the Stagehand browser tool Lambda and registers it in the shared
tool registry of the target environment. The registry table and the secret
structure manager are imported from the shared infrastructure stack.
"""

import os
import aws_cdk as cdk
from stacks.tools.stagehand_browser_tool_stack import StagehandBrowserToolStack


def main():
    """
    Main deployment function
    """

    # Get environment from environment variable or default to 'prod'
    environment = os.environ.get("ENVIRONMENT", "prod")

    app = cdk.App()

    env = cdk.Environment(
        account=os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=os.environ.get("CDK_DEFAULT_REGION", "us-east-1")
    )

    # Lambda has no bundled Chromium, so remote Browserbase sessions are the default
    stagehand_browser_tool = StagehandBrowserToolStack(
        app,
        f"StagehandBrowserToolStack-{environment}",
        env_name=environment,
        stagehand_env=app.node.try_get_context("stagehand_env") or "BROWSERBASE",
        env=env,
        description=f"Stagehand browser automation tool for {environment} environment"
    )

    tags = {
        "Environment": environment,
        "Project": "StepFunctionsAgent",
        "Tool": "StagehandBrowser"
    }

    for key, value in tags.items():
        cdk.Tags.of(stagehand_browser_tool).add(key, value)

    app.synth()


if __name__ == "__main__":
    main()
