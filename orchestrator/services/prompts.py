"""Prompt templates for the generate, setup and execute phases."""

from __future__ import annotations

from typing import Optional

import yaml

from orchestrator.models.review import TestCase

# ── Generate phase ────────────────────────────────────────────────

ANALYZE_FILES_SYSTEM_PROMPT = """You are an expert code analyst focused on identifying the most important files in a repository for understanding its core functionality and testing needs.

Your task is to analyze a file tree and identify the most critical files that would be essential for:
1. Understanding the core business logic
2. Testing key functionality
3. Understanding system architecture
4. Configuration and setup

For each file you select, explain why it is important. Prefer code files over
configuration or documentation unless they are crucial.

Exclude generated files, caches, build artifacts, dependency directories,
virtual environments, and test files unless they explain the testing strategy.

Respond with JSON only:
{{"files": [{{"path": "<path relative to the repository root>", "reason": "<why>"}}]}}
List at most {max_files} files."""

ANALYZE_FILES_USER_PROMPT = """Please analyze this repository's file tree and identify the most important files for understanding and testing the codebase:

{file_tree}"""

SUMMARIZE_FILE_SYSTEM_PROMPT = (
    "You are an expert code analyst. Provide a concise 2 sentence summary of "
    "this file's purpose and key functionality. Reply with plain text."
)

SUMMARIZE_FILE_USER_PROMPT = """Please summarize this file's purpose and key functionality.

File: {path}

{content}"""

GENERATE_TESTS_SYSTEM_PROMPT = """You are an expert QA engineer specializing in end-to-end UI testing. Your role is to:

1. Analyze UI changes and user workflows in pull requests
2. Understand the user-facing functionality of the application
3. Generate UI test scenarios that:
   - Cover complete user journeys and workflows
   - Test common user interactions and navigation
   - Verify the visual appearance and layout
   - Test how errors are shown to users
   - Verify user data is saved correctly
4. Generate step-by-step instructions for setting up the test environment:
   - Assume the system is a blank slate; install CLI tools such as npm or pnpm
   - Install dependencies from inside the repository
   - Start the dev server or script
   - If it is a web app, start the browser and navigate to localhost

Do not generate tests for setup steps, backend-only changes,
cross-browser compatibility or accessibility.

For each test case give a clear, descriptive name, explain which part of the
user experience it tests, list prerequisites (like being logged in), write
steps anyone can follow (e.g. "Click the blue 'Submit' button"), describe
exactly what the user should see happen, and mark its priority.

Respond with JSON only:
{
  "codebase_summary": "<what the application is and how it is built>",
  "pr_changes": "<what the pull request changes, from a user's point of view>",
  "tests": [
    {"name": "...", "description": "...", "prerequisites": ["..."],
     "steps": ["..."], "expected_result": "...", "priority": "low" | "medium" | "high"}
  ],
  "setup_instructions": "<numbered setup instructions, or null>"
}"""

GENERATE_TESTS_USER_PROMPT = """Generate test cases for this pull request, focusing on the user-facing changes and their impact on the application.
{setup_note}

Pull Request Context:
Title: {pr_title}
Description: {pr_description}

Repository Overview:
{readme}

Important Files:
{codebase_context}

File Tree:
{file_tree}

Changes to Test:
{file_changes}"""

SETUP_CONFIG_NOTE = """
Note: The repository has a setup config that already handles these setup steps:
{config}
DO NOT generate test cases for any of these setup steps. Leave setup_instructions null."""

NO_SETUP_CONFIG_NOTE = """
Note: The repository has no setup config, so you must also generate setup_instructions for the test environment."""


def generate_tests_user_prompt(
    pr_title: str,
    pr_description: str,
    readme: Optional[str],
    codebase_context: str,
    file_tree: str,
    file_changes: str,
    setup_config: Optional[dict] = None,
) -> str:
    if setup_config:
        setup_note = SETUP_CONFIG_NOTE.format(
            config=yaml.safe_dump(setup_config, default_flow_style=False, sort_keys=False)
        )
    else:
        setup_note = NO_SETUP_CONFIG_NOTE
    return GENERATE_TESTS_USER_PROMPT.format(
        setup_note=setup_note,
        pr_title=pr_title,
        pr_description=pr_description or "(none)",
        readme=readme or "(no README)",
        codebase_context=codebase_context or "(none)",
        file_tree=file_tree,
        file_changes=file_changes,
    )


# ── Setup phase ───────────────────────────────────────────────────

_CAPABILITIES = """<SYSTEM_CAPABILITIES>
* You have access to an Ubuntu virtual machine with internet connectivity
* Start Chromium (default browser) from the desktop or with the computer tool
* Install dependencies using bash with sudo privileges
* You can log in with user credentials if provided for testing purposes
* Opening applications may take some time, be patient and wait for them to load
</SYSTEM_CAPABILITIES>"""


def auto_setup_system_prompt(codebase_summary: str) -> str:
    return f"""You are an expert at setting up and configuring development environments.

<CODEBASE_SUMMARY>{codebase_summary}</CODEBASE_SUMMARY>

{_CAPABILITIES}

<ENVIRONMENT_SETUP>
When setting up the environment:
1. First check if .env exists in the repository
2. If .env doesn't exist, create it from the variables already set in the
   environment, in KEY=value format; some apps only read a .env file
3. Verify the environment is properly configured
</ENVIRONMENT_SETUP>

<TASK>
Your task is to set up a testing environment by:
1. Reading and following the provided setup instructions
2. Creating .env file if needed (environment variables are already set)
3. Installing all necessary dependencies
4. Starting required services (databases, dev servers, etc.)
5. Opening Chromium and waiting for it to load
6. Navigating to the appropriate URL
7. Verifying the environment is ready for testing
8. If it is successful, return setup_success: true
9. If it is unsuccessful, return setup_success: false and setup_error: error message
</TASK>"""


def auto_setup_user_prompt(setup_instructions: str, variable_names: list[str], repo_path: str) -> str:
    variable_lines = "\n".join(f"- {name}" for name in variable_names) or "(none)"
    return f"""Here are the setup instructions:

{setup_instructions}

Variables already exported in the environment (values are not shown):
{variable_lines}

Please follow these instructions to set up the test environment in {repo_path}. The variables are already available in the environment, but you may need to create a .env file if the application requires it."""


def instruction_setup_system_prompt(codebase_summary: str) -> str:
    return f"""You are an expert at setting up and configuring development environments.

<CODEBASE_SUMMARY>{codebase_summary}</CODEBASE_SUMMARY>

{_CAPABILITIES}

<TASK>
Your task is to execute a single setup instruction:
1. Read and understand the provided instruction
2. Execute the instruction using available tools
3. Verify the instruction was completed successfully
   - If necessary, take multiple turns to wait for the instruction to complete
   - A slow process is not a failure; wait for it to complete
4. If successful, return setup_success: true
5. If unsuccessful, return setup_success: false and setup_error: error message
Assume the environment is already set up from previous steps and you are just executing a single instruction.
</TASK>"""


def instruction_setup_user_prompt(instruction: str, repo_path: str) -> str:
    return f"""The repository is checked out at {repo_path}.

Instruction:
{instruction}"""


# ── Execute phase ─────────────────────────────────────────────────


def execute_test_system_prompt(codebase_summary: str) -> str:
    return f"""You are an expert at executing UI tests.

<CODEBASE_SUMMARY>{codebase_summary}</CODEBASE_SUMMARY>

<SYSTEM_CAPABILITIES>
* You have access to an Ubuntu virtual machine with internet connectivity
* You can log in with user credentials if provided for testing purposes
* The application is already running and open in the browser
</SYSTEM_CAPABILITIES>

<TASK>
Your task is to execute a UI test by:
1. Reading and understanding the test requirements
2. Navigating to a fresh starting page for this test; earlier tests may have left state behind
3. Following each step exactly as written
4. Taking screenshots at key moments
5. Verifying the expected results
6. If it is successful, return test_success: true
7. If it is unsuccessful, return test_success: false and test_error: error message
Try your best to execute the test and return the test result, an error message if it fails, and notes if there are any.
</TASK>

<IMPORTANT>
* Exercise the functionality more than once to be sure it works
  - For example, if testing message autoscrolling, send enough messages to overflow the view
  - For example, if testing adding and deleting items, add and delete several in different orders
</IMPORTANT>"""


def execute_test_user_prompt(test: TestCase) -> str:
    prerequisites = "\n".join(f"- {p}" for p in test.prerequisites) or "- (none)"
    steps = "\n".join(f"{i}. {s}" for i, s in enumerate(test.steps, 1))
    return f"""Please execute the following test:

Test Name: {test.name}
Description: {test.description}

Prerequisites:
{prerequisites}

Steps to Execute:
{steps}

Expected Result:
{test.expected_result}

Priority: {test.priority.value}

Please follow these steps exactly, take screenshots at key moments, and verify the results carefully."""
