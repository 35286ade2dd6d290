from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from typing import List
import os
import socket
import platform
from datetime import datetime
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

APP_NAME = os.getenv("APP_NAME", "web-stack")

app = FastAPI(title=f"{APP_NAME} placeholder", version="1.0.0")

PLACEHOLDER_PAGE = """<!DOCTYPE html>
<html>
<head><title>{name}</title></head>
<body>
<h1>{name}</h1>
<p>It works! Served by <code>{hostname}</code> behind the load balancer.</p>
<p>Replace this placeholder with your application.</p>
</body>
</html>
"""


class ServerInfo(BaseModel):
    hostname: str
    ip_addresses: List[str]
    platform: str


def get_ip_addresses(hostname: str) -> List[str]:
    """Non-loopback addresses of this host"""
    ip_addresses = []
    try:
        for info in socket.getaddrinfo(hostname, None, socket.AF_INET):
            ip = info[4][0]
            if not ip.startswith("127.") and ip not in ip_addresses:
                ip_addresses.append(ip)
    except socket.gaierror as e:
        logger.debug(f"Hostname resolution failed: {e}")
    return ip_addresses


@app.get("/", response_class=HTMLResponse)
async def root():
    """Serve the placeholder page"""
    return PLACEHOLDER_PAGE.format(name=APP_NAME, hostname=socket.gethostname())


@app.get("/health")
async def health():
    """Health check endpoint for the load balancer target group"""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.get("/server-info", response_model=ServerInfo)
async def server_info():
    """Get server information"""
    hostname = socket.gethostname()
    ip_addresses = get_ip_addresses(hostname)
    logger.info(f"Server info returned: hostname={hostname}, ips={ip_addresses}")
    return ServerInfo(
        hostname=hostname,
        ip_addresses=ip_addresses or ["Not available"],
        platform=platform.platform()
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("APP_PORT", "8080")))
