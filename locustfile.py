import io

from locust import HttpUser, between, task
from PIL import Image

__all__ = ["XrayAnalysisUser"]


def _sample_png() -> bytes:
    buf = io.BytesIO()
    Image.new("L", (640, 480), color=90).save(buf, format="PNG")
    return buf.getvalue()


SAMPLE_IMAGE = _sample_png()


class XrayAnalysisUser(HttpUser):
    # Simulates users waiting between 1 and 3 seconds between requests
    wait_time = between(1, 3)

    @task(5)
    def analyze_xray(self):
        self.client.post(
            "/api/v1/analyze",
            files={"image": ("sample.png", SAMPLE_IMAGE, "image/png")},
        )

    @task(2)
    def backend_health(self):
        self.client.get("/api/v1/analyze/health")

    @task(1)
    def load_openapi(self):
        """Simulates developers/tools fetching the API schema."""
        self.client.get("/openapi.json")
