import os

import uvicorn

from recap.main import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=int(os.environ.get("RECAP_PORT", "6684")))
