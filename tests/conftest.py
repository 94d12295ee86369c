"""Shared fixtures: KML document builders, icon images and a fake HTTP layer."""

import io
import zipfile

import pytest
from PIL import Image

KML_NS = "http://www.opengis.net/kml/2.2"
GX_NS = "http://www.google.com/kml/ext/2.2"


def kml(body: str) -> bytes:
    """Wrap Document content in a KML root element."""
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<kml xmlns="{KML_NS}" xmlns:gx="{GX_NS}"><Document>{body}</Document></kml>'
    ).encode("utf-8")


def placemark(name: str = None, geometry: str = "", extra: str = "", **attrs) -> str:
    parts = [f"<name>{name}</name>"] if name is not None else []
    parts.append(extra)
    parts.append(geometry)
    id_attr = f' id="{attrs["id"]}"' if "id" in attrs else ""
    return f"<Placemark{id_attr}>{''.join(parts)}</Placemark>"


def point(lon: float = 1.0, lat: float = 2.0) -> str:
    return f"<Point><coordinates>{lon},{lat}</coordinates></Point>"


def line(*coords) -> str:
    coords = coords or ((0, 0), (1, 1))
    text = " ".join(f"{x},{y}" for x, y in coords)
    return f"<LineString><coordinates>{text}</coordinates></LineString>"


def polygon() -> str:
    return (
        "<Polygon><outerBoundaryIs><LinearRing><coordinates>"
        "0,0 4,0 4,4 0,4 0,0"
        "</coordinates></LinearRing></outerBoundaryIs></Polygon>"
    )


def png_bytes(size=(2, 2), color=(100, 150, 200, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_kmz(path, document: bytes, resources: dict = None):
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("doc.kml", document)
        for name, data in (resources or {}).items():
            archive.writestr(name, data)
    return path


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        import requests
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=8192):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]


@pytest.fixture
def fake_http(monkeypatch):
    """Route requests.get to an in-memory table of URL -> bytes, recording every call."""
    import requests

    class FakeHTTP:
        def __init__(self):
            self.responses = {}
            self.calls = []

        def get(self, url, **kwargs):
            self.calls.append(url)
            if url not in self.responses:
                raise requests.ConnectionError(f"unreachable: {url}")
            return FakeResponse(self.responses[url])

    http = FakeHTTP()
    monkeypatch.setattr(requests, "get", http.get)
    return http


@pytest.fixture
def icon_file(tmp_path):
    path = tmp_path / "icons" / "pin.png"
    path.parent.mkdir()
    path.write_bytes(png_bytes((4, 4)))
    return path
