"""Run the LifeOS API locally. Set DATABASE_URL to use Postgres, otherwise events stay in memory."""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "backend.main:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("ENVIRONMENT", "development") == "development",
    )
