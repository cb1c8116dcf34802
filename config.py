"""Configuration settings for the SVG/ASCII refinement loop."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
OUTPUTS_DIR = Path(os.getenv("SKETCHLOOP_OUTPUTS_DIR", PROJECT_ROOT / "outputs"))

# API Keys (loaded from .env)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
XAI_API_KEY = os.getenv("XAI_API_KEY")
CUSTOM_API_KEY = os.getenv("CUSTOM_API_KEY")

API_KEYS = {
    "openai": OPENAI_API_KEY,
    "anthropic": ANTHROPIC_API_KEY,
    "google": GOOGLE_API_KEY,
    "openrouter": OPENROUTER_API_KEY,
    "xai": XAI_API_KEY,
    "custom": CUSTOM_API_KEY,
}

# LLM Provider: any key registered in sketchloop.llm
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")
MAX_OUTPUT_TOKENS = 16000
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
XAI_BASE_URL = "https://api.x.ai/v1"

# Output settings
SVG_WIDTH = 800
SVG_HEIGHT = 600
ASCII_WIDTH = 80   # characters
ASCII_HEIGHT = 40  # lines

# Loop settings
MAX_STEPS = 3

# ASCII grid rendering
GRID_CELL_WIDTH = 12      # pixels
GRID_CELL_ASPECT = 0.6    # cell width / cell height
GRID_FONT_FAMILY = "DejaVu Sans Mono, Menlo, Consolas, monospace"
GRID_BACKGROUND = "#1f2937"
GRID_FOREGROUND = "#22c55e"
GRID_FRAME = "#4b5563"

# Render error feedback
ERROR_CONTEXT_LINES = 2

# Logging
LOG_LEVEL = os.getenv("SKETCHLOOP_LOG_LEVEL", "WARNING")
