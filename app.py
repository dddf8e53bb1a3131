import asyncio
import logging
from typing import Literal, Optional

import httpx
import uvicorn
from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from scenegen import codec
from scenegen.config import StudioConfig, load_config
from scenegen.errors import GenerationInProgress, InvalidImageFormat, MissingInput
from scenegen.orchestrator import SceneGenerator
from scenegen.prompts import PROMPT_LABELS, PROMPT_PRESETS, PromptOption
from scenegen.session import SceneStudio, StudioSnapshot

logger = logging.getLogger("scenegen.app")

ImageRole = Literal["person", "product"]

# Some image hosts refuse requests that don't look like a browser.
FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Referer": "https://www.google.com/",
}


# --- Request Models ---
class DataUrlPayload(BaseModel):
    dataUrl: str = Field(..., description="Image as 'data:image/...;base64,...'.")


class ImageUrlPayload(BaseModel):
    url: str = Field(..., description="Direct link to a PNG, JPEG or WebP image.")


class PromptPayload(BaseModel):
    option: PromptOption
    text: Optional[str] = Field(default=None, description="Prompt text, used with the custom option.")


class PromptPreset(BaseModel):
    option: PromptOption
    label: str
    prompt: Optional[str] = None


def create_app(studio: Optional[SceneStudio] = None, config: Optional[StudioConfig] = None) -> FastAPI:
    """Build the API around a single studio. Loads config from the environment when not given."""
    if studio is None or config is None:
        config = config or load_config()
        logging.basicConfig(
            level=config.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    if studio is None:
        generator = SceneGenerator.from_config(config)
        studio = SceneStudio(
            generator.generate_scene,
            max_attempts=config.max_attempts,
            backoff_seconds=config.retry_backoff_seconds,
        )

    app = FastAPI(
        title="Product Scene Studio",
        description="Composites a person and a product into one photorealistic scene with Gemini.",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.studio = studio
    app.state.config = config
    # Runs abandoned by cancel keep going until their Gemini call returns.
    app.state.tasks = set()

    def _finish_task(task: asyncio.Task) -> None:
        app.state.tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scene generation task failed.", exc_info=task.exception())

    def _store_upload(role: ImageRole, raw: bytes) -> StudioSnapshot:
        try:
            encoded = codec.encode_upload(raw, max_bytes=config.max_upload_bytes)
        except InvalidImageFormat as e:
            raise HTTPException(status_code=400, detail=str(e))
        studio.set_image(role, encoded)
        return studio.snapshot()

    # --- State ---
    @app.get("/state", response_model=StudioSnapshot)
    async def get_state():
        return studio.snapshot()

    @app.get("/prompts", response_model=list[PromptPreset])
    async def list_prompts():
        return [
            PromptPreset(option=option, label=PROMPT_LABELS[option], prompt=PROMPT_PRESETS.get(option))
            for option in PromptOption
        ]

    # --- Inputs ---
    @app.put("/images/{role}", response_model=StudioSnapshot)
    async def upload_image(role: ImageRole, file: UploadFile = File(...)):
        return _store_upload(role, await file.read())

    @app.put("/images/{role}/data-url", response_model=StudioSnapshot)
    async def put_data_url(role: ImageRole, payload: DataUrlPayload):
        try:
            codec.decode(payload.dataUrl)
        except InvalidImageFormat as e:
            raise HTTPException(status_code=400, detail=str(e))
        studio.set_image(role, payload.dataUrl)
        return studio.snapshot()

    @app.post("/images/{role}/from-url", response_model=StudioSnapshot)
    async def fetch_image(role: ImageRole, payload: ImageUrlPayload):
        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(payload.url, follow_redirects=True, timeout=15, headers=FETCH_HEADERS)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise HTTPException(status_code=e.response.status_code, detail=f"Image server error: {e.response.status_code}")
            except httpx.RequestError as e:
                logger.warning("Fetching %s failed: %s", payload.url, e)
                raise HTTPException(status_code=400, detail=f"Failed to fetch image: {e}")
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="URL is not a direct image link.")
        return _store_upload(role, response.content)

    @app.delete("/images/{role}", response_model=StudioSnapshot)
    async def delete_image(role: ImageRole):
        studio.clear_image(role)
        return studio.snapshot()

    @app.put("/prompt", response_model=StudioSnapshot)
    async def set_prompt(payload: PromptPayload):
        studio.select_prompt(payload.option, payload.text)
        return studio.snapshot()

    # --- Generation ---
    @app.post("/generate", status_code=202, response_model=StudioSnapshot)
    async def generate(wait: bool = False):
        try:
            session = studio.begin()
        except MissingInput as e:
            raise HTTPException(status_code=400, detail=str(e))
        except GenerationInProgress as e:
            raise HTTPException(status_code=409, detail=str(e))

        if session is not None:
            logger.info("Starting scene generation with the '%s' prompt.", studio.prompt_option.value)
            task = asyncio.create_task(studio.run(session))
            app.state.tasks.add(task)
            task.add_done_callback(_finish_task)
            if wait:
                await asyncio.wait({task})
        return studio.snapshot()

    @app.post("/cancel", response_model=StudioSnapshot)
    async def cancel():
        studio.cancel()
        return studio.snapshot()

    @app.post("/reset", response_model=StudioSnapshot)
    async def reset():
        studio.reset()
        return studio.snapshot()

    @app.get(
        "/result",
        response_class=Response,
        responses={200: {"content": {"image/png": {}}, "description": "The generated scene."}},
    )
    async def download_result():
        if studio.result is None:
            raise HTTPException(status_code=404, detail="No generated image available.")
        try:
            payload = codec.decode(studio.result)
            content = payload.to_bytes()
        except InvalidImageFormat as e:
            logger.error("Stored result is not a downloadable image: %s", e)
            raise HTTPException(status_code=502, detail="The AI model returned an unsupported image.")
        extension = payload.mime_type.split("/", 1)[1]
        return Response(
            content=content,
            media_type=payload.mime_type,
            headers={"Content-Disposition": f'attachment; filename="product-scene.{extension}"'},
        )

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
