
# bliss/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import (submit_request_data, submit_request_video, attach_request_video, request_video_download_url,
                    request_data_download, cancel_request, submit_response, response_video_download_url,
                    serve_local_media)

router = APIRouter(prefix="/bliss")

UPLOAD_FAILED = ('Bliss Upload Failed!', 'BLISS_UPLOAD_FAILED')

router.post("/request/data")(response_wrapper(submit_request_data, UPLOAD_FAILED))
router.post("/request/video")(response_wrapper(submit_request_video, UPLOAD_FAILED))
router.post("/request/video/attach")(response_wrapper(attach_request_video, UPLOAD_FAILED))
router.get("/request/video/downloadurl")(response_wrapper(
    request_video_download_url, ('Bliss Video Download SignedURL Fetch Failed', 'BLISS_REQ_VIDEO_URL_FETCH_FAILED')))
router.get("/request/data/download")(response_wrapper(
    request_data_download, ('Bliss Request Data Fetch Failed', 'BLISS_REQ_DATA_FETCHED_FAILED')))
router.post("/request/cancel")(response_wrapper(
    cancel_request, ('Bliss Request Delete Failed!', 'BLISS_REQ_DELETE_FAILED')))
router.post("/response")(response_wrapper(
    submit_response, ('Bliss Response Failed!', 'BLISS_RESPONSE_FAILED')))
router.get("/response/video/downloadurl")(response_wrapper(
    response_video_download_url,
    ('Bliss Response Video Download SignedURL Fetch Failed!', 'BLISS_RES_VIDEO_URL_FETCH_FAILED')))

media_router = APIRouter()
media_router.get("/media/{bucket}/{key}")(serve_local_media)
