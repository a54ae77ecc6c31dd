import io

import pytest
from PIL import Image

from imagegen.generation.retry import RetryPolicy


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    """A small opaque PNG."""
    return encode_image(Image.new("RGB", (32, 24), (200, 40, 40)))


@pytest.fixture()
def rgba_png_bytes() -> bytes:
    """A PNG whose left half is fully transparent."""
    image = Image.new("RGBA", (64, 64), (10, 120, 200, 255))
    image.paste((0, 0, 0, 0), (0, 0, 32, 64))
    return encode_image(image)


@pytest.fixture()
def noise_png_bytes() -> bytes:
    """A 512x512 noise PNG that does not compress well."""
    return encode_image(Image.effect_noise((512, 512), 96).convert("RGB"))


@pytest.fixture()
def fast_policy() -> RetryPolicy:
    """Polling policy without delays."""
    return RetryPolicy(interval_s=0.0, max_interval_s=0.0, backoff_factor=1.0, initial_delay_s=0.0)
