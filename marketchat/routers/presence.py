from fastapi import APIRouter, Depends

from marketchat.schemas.user import UserPublic
from marketchat.utils.dependencies import get_connection_manager, get_current_user
from marketchat.utils.websocket_manager import ConnectionManager


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, current_user: UserPublic = Depends(get_current_user), connections: ConnectionManager = Depends(get_connection_manager)):
    """Online status from this process's live connection registry."""
    online = connections.lookup(user_id) is not None
    return {"success": True, "userId": user_id, "online": online}
