import os, sys, uvicorn

# Make sure our code is importable regardless of where the container mounts the repo
for p in ["/code", "/workspace", "/app"]:
    if p not in sys.path:
        sys.path.insert(0, p)

from branchportal.main import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
