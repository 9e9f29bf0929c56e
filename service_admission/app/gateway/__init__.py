from .orchestrator import AdmissionGateway, client_ip
from .responses import render_response

__all__ = ["AdmissionGateway", "client_ip", "render_response"]
