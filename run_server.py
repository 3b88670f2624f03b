from devserver.config import load_config
from devserver.server import start_server

# Entry point: only runs when this script is called directly:
#   python run_server.py
#
# PORT, NODE_ENV, HOST, STATIC_ROOT, DEBUG and TUNNEL_HOST are read once here.
# Drop key.pem / cert.pem next to this file (python generate_cert.py) to
# serve over HTTPS in development.
if __name__ == "__main__":
    start_server(load_config())
