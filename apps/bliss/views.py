from typing import Optional

from fastapi import Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from apps.bliss.schema import BlissCancelIn, BlissDataRequestIn
from apps.bliss.services import BlissCoordinator
from apps.bliss.storage import LocalStorage


def get_coordinator(request: Request) -> BlissCoordinator:
    return request.app.state.coordinator


async def _read(upload: Optional[UploadFile]):
    if upload is None:
        return None, None
    return await upload.read(), upload.content_type or 'application/octet-stream'


async def submit_request_data(data: BlissDataRequestIn,
                              coordinator: BlissCoordinator = Depends(get_coordinator)):
    result = await coordinator.submit_data_request(data.client_id, data.celeb_name, data.bliss_request_data)
    return {'RESPONSE': 'Bliss Sent!', 'CODE': 'BLISS_SENT', 'BLISS_ID': result.id,
            'NOTIFIED': result.notified}


async def submit_request_video(bliss_requester: Optional[str] = Form(None),
                               bliss_responder: Optional[str] = Form(None),
                               bliss_request_video: Optional[UploadFile] = File(None),
                               coordinator: BlissCoordinator = Depends(get_coordinator)):
    data, mime_type = await _read(bliss_request_video)
    result = await coordinator.submit_video_request(bliss_requester, bliss_responder, data, mime_type)
    return {'RESPONSE': 'Bliss Sent!', 'CODE': 'BLISS_SENT', 'BLISS_ID': result.id,
            'NOTIFIED': result.notified}


async def attach_request_video(bliss_request_id: Optional[int] = Form(None),
                               bliss_request_video: Optional[UploadFile] = File(None),
                               coordinator: BlissCoordinator = Depends(get_coordinator)):
    data, mime_type = await _read(bliss_request_video)
    result = await coordinator.attach_request_video(bliss_request_id, data, mime_type)
    return {'RESPONSE': 'Bliss Video Attached!', 'CODE': 'BLISS_REQ_VIDEO_ATTACHED', 'BLISS_ID': result.id}


async def request_video_download_url(bliss_request_id: Optional[int] = Query(None),
                                     coordinator: BlissCoordinator = Depends(get_coordinator)):
    url = await coordinator.fetch_request_video_url(bliss_request_id)
    return {'RESPONSE': 'Bliss Video Download SignedURL Fetched!', 'CODE': 'BLISS_REQ_VIDEO_URL_FETCHED',
            'URL': url.url, 'EXPIRETIME': url.expire_time}


async def request_data_download(bliss_request_id: Optional[int] = Query(None),
                                coordinator: BlissCoordinator = Depends(get_coordinator)):
    data = await coordinator.fetch_request_data(bliss_request_id)
    return {'RESPONSE': 'Bliss Request Data Fetched!', 'CODE': 'BLISS_REQ_DATA_FETCHED',
            'DATA': data.model_dump()}


async def cancel_request(data: BlissCancelIn, coordinator: BlissCoordinator = Depends(get_coordinator)):
    result = await coordinator.cancel_request(data.bliss_request_id)
    return {'RESPONSE': 'Bliss Request Deleted!', 'CODE': 'BLISS_REQ_DELETED', 'BLISS_ID': result.id,
            'NOTIFIED': result.notified}


async def submit_response(bliss_request_id: Optional[int] = Form(None),
                          client_id: Optional[str] = Form(None),
                          celeb_name: Optional[str] = Form(None),
                          bliss_response_video: Optional[UploadFile] = File(None),
                          coordinator: BlissCoordinator = Depends(get_coordinator)):
    data, mime_type = await _read(bliss_response_video)
    result = await coordinator.submit_response(bliss_request_id, client_id, celeb_name, data, mime_type)
    return {'RESPONSE': 'Bliss Sent!', 'CODE': 'BLISS_SENT', 'BLISS_RESPONSE_ID': result.id,
            'NOTIFIED': result.notified}


async def response_video_download_url(bliss_response_id: Optional[int] = Query(None),
                                      coordinator: BlissCoordinator = Depends(get_coordinator)):
    url = await coordinator.fetch_response_video_url(bliss_response_id)
    return {'RESPONSE': 'Bliss Response Video Download SignedURL Fetched!',
            'CODE': 'BLISS_RES_VIDEO_URL_FETCHED', 'URL': url.url, 'EXPIRETIME': url.expire_time}


async def serve_local_media(bucket: str, key: str, expires: int, signature: str,
                            coordinator: BlissCoordinator = Depends(get_coordinator)):
    """Serve a local-storage object behind its HMAC signed URL."""
    stores = (coordinator.request_videos, coordinator.response_videos, coordinator.response_output)
    storage = next((s for s in stores if isinstance(s, LocalStorage) and s.bucket == bucket), None)
    if storage is None or not storage.verify(key, expires, signature):
        raise HTTPException(status_code=403, detail='Invalid or expired signature')
    blob = await storage.get(key)
    if blob is None:
        raise HTTPException(status_code=404, detail='Blob not found')
    data, content_type = blob
    return Response(content=data, media_type=content_type)
