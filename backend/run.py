"""
StreamGate Backend Runner
Run with: python run.py
"""

import uvicorn
from streamgate.config import settings


if __name__ == "__main__":
    print(f"""
    StreamGate {settings.APP_VERSION}

    Starting server at http://{settings.HOST}:{settings.PORT}
    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    uvicorn.run(
        "streamgate.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
