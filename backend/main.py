#!/usr/bin/env python3
"""Main entry point for ptzcast backend."""

import sys
from pathlib import Path
import uvicorn

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from ptzcast.app_orchestrator import AppOrchestrator


def main():
    """Main entry point."""
    # Paths
    project_root = Path(__file__).parent.parent
    config_dir = project_root / "config"
    frontend_dist = project_root / "frontend" / "dist"
    
    # Create orchestrator
    orchestrator = AppOrchestrator(config_dir, frontend_dist)
    
    # Start application
    app = orchestrator.start()
    
    # Run server (single worker: the supervisor and control client own the camera in-process)
    uvicorn.run(
        app,
        host=orchestrator.config_service.get("host", "0.0.0.0"),
        port=int(orchestrator.config_service.get("port", 3000)),
        log_level="info",
        workers=1,
    )


if __name__ == "__main__":
    main()
