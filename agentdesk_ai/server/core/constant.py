PROJECT_NAME = "AgentDesk-AI Orchestration Core"
API_V1_STR = "/api/v1"
