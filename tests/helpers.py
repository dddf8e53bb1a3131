from io import BytesIO

from PIL import Image

PERSON_URL = "data:image/png;base64,cGVyc29u"
PRODUCT_URL = "data:image/jpeg;base64,cHJvZHVjdA=="
RESULT_URL = "data:image/png;base64,AAAA"


def make_image_bytes(image_format: str = "PNG") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (4, 4), (200, 30, 30)).save(buffer, format=image_format)
    return buffer.getvalue()
