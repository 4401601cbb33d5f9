#!/usr/bin/env python3
"""Build a RAG knowledge base from a folder of documents.

Thin wrapper around ``python -m echonext.knowledge.builder`` that can be
run from a checkout without installing the package.

Usage:
    python scripts/build_knowledge_base.py <input-folder> <output-name> <language> [chunk-size] [chunk-overlap]

Example:
    python scripts/build_knowledge_base.py knowledge-data/physics physics-rag ja 500 50

Environment variables:
    OPENAI_API_KEY: Required unless Azure OpenAI is configured
    AZURE_OPENAI_API_KEY / AZURE_OPENAI_ENDPOINT: Use Azure OpenAI instead
    OPENAI_EMBEDDING_MODEL: Embedding model or deployment (default text-embedding-ada-002)
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

env_path = backend_dir / ".env"
if env_path.exists():
    load_dotenv(env_path)

from echonext.knowledge.builder import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
