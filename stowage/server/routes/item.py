import logging
import urllib.parse

from aiohttp import web

from stowage.models.base import BaseResponse, create_error_response
from stowage.models.item import (
    ArchiveSelectionDTO,
    FolderCreateDTO,
    FolderSizesDTO,
    MoveDTO,
    RenameDTO,
)
from stowage.server.errors import ErrorCode, ItemServiceException
from stowage.server.services.item import DownloadResult, ItemService, UploadSource
from stowage.server.services.storage import CHUNK_SIZE
from stowage.server.services.subscription import SubscriptionService

logger = logging.getLogger(__name__)
routes = web.RouteTableDef()

_STATUS_BY_CODE = {
    ErrorCode.ITEM_NOT_FOUND.value: 404,
    ErrorCode.USER_NOT_FOUND.value: 404,
    ErrorCode.NAME_ALREADY_EXISTS.value: 409,
    ErrorCode.PARENT_FOLDER_DELETED.value: 409,
    ErrorCode.PATH_ESCAPE.value: 403,
    ErrorCode.ARCHIVE_TOO_LARGE.value: 413,
    ErrorCode.FILE_TOO_LARGE.value: 413,
    ErrorCode.IO_ERROR.value: 500,
    ErrorCode.UNEXPECTED_ERROR.value: 500,
}


def _json(response: BaseResponse) -> web.Response:
    status = 200
    if not response.success:
        status = _STATUS_BY_CODE.get(response.error_code or "", 400)
    return web.json_response(response.to_dict(), status=status)


def _optional_int(value: str | None) -> int | None:
    if value in (None, "", "null"):
        return None
    return int(value)


def _item_id(request: web.Request) -> int:
    return int(request.match_info["item_id"])


async def _stream_download(request: web.Request, result: DownloadResult) -> web.StreamResponse:
    if result.stream is None:
        return _json(result.response)
    stream = result.stream
    quoted = urllib.parse.quote(stream.filename)
    response = web.StreamResponse(
        headers={
            "Content-Type": stream.content_type,
            "Content-Disposition": f"attachment; filename*=UTF-8''{quoted}",
        }
    )
    response.content_length = stream.size
    try:
        await response.prepare(request)
        async for chunk in stream.iter_chunks(CHUNK_SIZE):
            await response.write(chunk)
        await response.write_eof()
    finally:
        await stream.close()
    return response


@routes.get("/api/items")
async def handle_list_items(request: web.Request) -> web.Response:
    # Query: parentId, page, pageSize, sortBy, sortDir, trash
    item_service: ItemService = request.app["item_service"]
    query = request.query
    try:
        parent_id = _optional_int(query.get("parentId"))
        page = int(query.get("page", "1"))
        page_size = int(query.get("pageSize", "20"))
    except ValueError:
        return _json(create_error_response("Invalid query parameters", "INVALID_REQUEST"))

    response = await item_service.list_items(
        request["user_id"],
        parent_id,
        page=page,
        page_size=page_size,
        sort_by=query.get("sortBy"),
        sort_dir=query.get("sortDir"),
        trash_view=query.get("trash", "").lower() in ("1", "true", "yes"),
    )
    return _json(response)


@routes.get(r"/api/items/{item_id:\d+}")
async def handle_get_item(request: web.Request) -> web.Response:
    item_service: ItemService = request.app["item_service"]
    return _json(await item_service.get_item(request["user_id"], _item_id(request)))


@routes.post("/api/items/folders")
async def handle_create_folder(request: web.Request) -> web.Response:
    req_data = FolderCreateDTO.from_dict(await request.json())
    item_service: ItemService = request.app["item_service"]
    response = await item_service.create_folder(
        request["user_id"], req_data.name, req_data.parent_id
    )
    return _json(response)


@routes.put("/api/items/upload")
async def handle_upload(request: web.Request) -> web.Response:
    # Raw request body. Query: name, parentId
    item_service: ItemService = request.app["item_service"]
    try:
        parent_id = _optional_int(request.query.get("parentId"))
    except ValueError:
        return _json(create_error_response("Invalid parentId", "INVALID_REQUEST"))

    source = UploadSource(
        filename=request.query.get("name", ""),
        content_length=request.content_length or 0,
        content_type=request.headers.get("Content-Type"),
        stream=request.content.iter_chunked(CHUNK_SIZE),
    )
    return _json(await item_service.upload_file(request["user_id"], source, parent_id))


@routes.patch(r"/api/items/{item_id:\d+}/rename")
async def handle_rename(request: web.Request) -> web.Response:
    req_data = RenameDTO.from_dict(await request.json())
    item_service: ItemService = request.app["item_service"]
    response = await item_service.rename_item(
        request["user_id"], _item_id(request), req_data.new_name
    )
    return _json(response)


@routes.patch(r"/api/items/{item_id:\d+}/move")
async def handle_move(request: web.Request) -> web.Response:
    req_data = MoveDTO.from_dict(await request.json())
    item_service: ItemService = request.app["item_service"]
    response = await item_service.move_item(
        request["user_id"], _item_id(request), req_data.parent_id
    )
    return _json(response)


@routes.delete(r"/api/items/{item_id:\d+}")
async def handle_soft_delete(request: web.Request) -> web.Response:
    item_service: ItemService = request.app["item_service"]
    return _json(await item_service.soft_delete_item(request["user_id"], _item_id(request)))


@routes.post(r"/api/items/{item_id:\d+}/restore")
async def handle_restore(request: web.Request) -> web.Response:
    item_service: ItemService = request.app["item_service"]
    return _json(await item_service.restore_item(request["user_id"], _item_id(request)))


@routes.delete(r"/api/items/{item_id:\d+}/permanent")
async def handle_permanent_delete(request: web.Request) -> web.Response:
    item_service: ItemService = request.app["item_service"]
    response = await item_service.permanently_delete_item(
        request["user_id"], _item_id(request)
    )
    return _json(response)


@routes.get(r"/api/items/{item_id:\d+}/size")
async def handle_folder_size(request: web.Request) -> web.Response:
    item_service: ItemService = request.app["item_service"]
    return _json(await item_service.folder_size(request["user_id"], _item_id(request)))


@routes.post("/api/items/sizes")
async def handle_folder_sizes(request: web.Request) -> web.Response:
    req_data = FolderSizesDTO.from_dict(await request.json())
    item_service: ItemService = request.app["item_service"]
    return _json(await item_service.folder_sizes(request["user_id"], req_data.folder_ids))


@routes.get(r"/api/items/{item_id:\d+}/download")
async def handle_download(request: web.Request) -> web.StreamResponse:
    item_service: ItemService = request.app["item_service"]
    result = await item_service.download_file(request["user_id"], _item_id(request))
    return await _stream_download(request, result)


@routes.get(r"/api/items/{item_id:\d+}/archive")
async def handle_folder_archive(request: web.Request) -> web.StreamResponse:
    item_service: ItemService = request.app["item_service"]
    result = await item_service.download_folder(request["user_id"], _item_id(request))
    return await _stream_download(request, result)


@routes.post("/api/items/archive")
async def handle_selection_archive(request: web.Request) -> web.StreamResponse:
    req_data = ArchiveSelectionDTO.from_dict(await request.json())
    item_service: ItemService = request.app["item_service"]
    result = await item_service.download_selection(request["user_id"], req_data.item_ids)
    return await _stream_download(request, result)


@routes.get("/api/users/limits")
async def handle_user_limits(request: web.Request) -> web.Response:
    subscription_service: SubscriptionService = request.app["subscription_service"]
    try:
        response = await subscription_service.get_teamspace_limits(request["user_id"])
    except ItemServiceException as err:
        return _json(create_error_response(err.message, err.code.value))
    return _json(response)
