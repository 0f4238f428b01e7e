"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_ENV: str = "development"
    APP_DEBUG: bool = True

    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 3000

    # OpenAI-compatible chat-completions backend
    LLM_API_KEY: str = ""
    LLM_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TIMEOUT: float = 120.0

    GITHUB_TOKEN: str = ""
    GITHUB_USERNAME: str = ""
    TARGET_REPO_URL: str = ""
    GIT_AUTHOR_NAME: str = "Test Autopilot"
    GIT_AUTHOR_EMAIL: str = "test-autopilot@users.noreply.github.com"

    JIRA_HOST: str = ""
    JIRA_EMAIL: str = ""
    JIRA_API_TOKEN: str = ""
    JIRA_DONE_STATUS: str = "Done"
    JIRA_IN_PROGRESS_STATUS: str = "In Progress"

    WORKSPACE_ROOT: str = "shared/workspaces"
    TEST_TIMEOUT: int = 600
    HEADED: bool = True
    INSTALL_DEPENDENCIES: bool = True

    PAGE_FETCH_TIMEOUT: float = 10.0
    PAGE_HTML_LIMIT: int = 5000
    PAGE_BASE_URL: str = ""
    REPAIR_MAX_RETRIES: int = 1

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "shared/logs/app.log"

    class Config:
        env_file = (".env", "../.env")  # works from both the repo root and backend/
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
