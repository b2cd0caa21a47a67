from fastapi import Header, HTTPException


def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=36),
) -> str:
    """인증 계층(게이트웨이)이 넘겨준 사용자 ID"""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return user_id


def get_admin_id(
    x_admin_id: str = Header(..., alias="X-Admin-Id", min_length=1, max_length=36),
) -> str:
    """관리자 엔드포인트 호출자 ID"""
    admin_id = x_admin_id.strip()
    if not admin_id:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return admin_id
