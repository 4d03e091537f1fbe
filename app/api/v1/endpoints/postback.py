from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from app.core.lifecycle import get_postback_host
from engine.dispatch.exceptions import ExecutionTerminated
from engine.dispatch.host import PostbackHost
from engine.utils import get_logger

log = get_logger("api.postback")

router = APIRouter()


@router.post("/admin-post")
async def admin_post(
    request: Request,
    host: PostbackHost = Depends(get_postback_host),
):
    """
    Inbound postback endpoint.

    Routes the form's 'action' field to the authenticated or anonymous
    listeners. Listeners end the request themselves; nothing is rendered.
    """
    form = await request.form()
    host.context.form = dict(form)

    try:
        handled = host.route_postback()
    except ExecutionTerminated as exc:
        if exc.silent:
            return Response(status_code=status.HTTP_200_OK)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Execution terminated"},
        )

    if not handled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown postback action",
        )

    # Listeners ran but none ended the request.
    return Response(status_code=status.HTTP_204_NO_CONTENT)
