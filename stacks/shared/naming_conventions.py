import re


class NamingConventions:
    """
    Naming conventions utility for consistent resource naming across stacks.

    This class provides standardized naming patterns for:
    - Tool Lambda functions
    - The consolidated tool secret
    - CloudFormation exports of the shared infrastructure
    """

    @staticmethod
    def tool_lambda_name(tool_id: str, environment: str = "prod") -> str:
        """
        Generate consistent tool Lambda function name.

        Args:
            tool_id: Tool identifier (e.g., "stagehand-browser")
            environment: Environment name (e.g., "prod", "dev", "staging")

        Returns:
            Standardized Lambda function name: "tool-{tool_id}-{environment}"
        """
        if not NamingConventions.validate_tool_id(tool_id):
            raise ValueError(f"Invalid tool_id: {tool_id}. Must contain only lowercase letters, numbers, and hyphens.")

        return f"tool-{tool_id}-{environment}"

    @staticmethod
    def tool_secrets_path(environment: str = "prod") -> str:
        """
        Consolidated tool secret shared by all tools of an environment.

        Returns:
            Secrets Manager path: "/ai-agent/tool-secrets/{environment}"
        """
        return f"/ai-agent/tool-secrets/{environment}"

    @staticmethod
    def stack_export_name(resource_type: str, resource_name: str, environment: str = "prod") -> str:
        """
        Generate consistent CloudFormation export name.

        Args:
            resource_type: Type of resource (e.g., "Table", "TableArn")
            resource_name: Name of the resource
            environment: Environment name

        Returns:
            Export name: "Shared{resource_type}{resource_name}-{environment}"
        """
        return f"Shared{resource_type}{resource_name}-{environment}"

    @staticmethod
    def validate_tool_id(tool_id: str) -> bool:
        """
        Validate tool ID follows naming convention.

        Rules:
            - Only lowercase letters, numbers, and hyphens
            - Must start with letter
            - Cannot end with hyphen
            - Length between 3-50 characters
        """
        if not tool_id or len(tool_id) < 3 or len(tool_id) > 50:
            return False

        pattern = r'^[a-z][a-z0-9-]*[a-z0-9]$'
        return bool(re.match(pattern, tool_id))
