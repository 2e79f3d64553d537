from typing import Optional

from utils.error_handling import ApiError
from utils.logger import get_logger, log_exception


def _default_name(email: Optional[str]) -> str:
    return (email or "").split("@")[0] or "User"


def user_view(auth_user, profile: Optional[dict], fallback: Optional[dict] = None) -> dict:
    """Merge an auth user with its `users` row into the shape the client expects."""
    profile = profile or {}
    fallback = fallback or {}
    email = getattr(auth_user, "email", None)
    return {
        "id": auth_user.id,
        "email": email,
        "name": profile.get("name") or fallback.get("name") or _default_name(email),
        "role": profile.get("role") or fallback.get("role") or "user",
        "phone": profile.get("phone") or fallback.get("phone"),
        "organizationId": profile.get("organization_id") or fallback.get("organizationId"),
        "image": profile.get("image"),
    }


def session_view(session) -> Optional[dict]:
    if session is None:
        return None
    return {
        "access_token": getattr(session, "access_token", None),
        "refresh_token": getattr(session, "refresh_token", None),
        "expires_in": getattr(session, "expires_in", None),
        "expires_at": getattr(session, "expires_at", None),
        "token_type": getattr(session, "token_type", None),
    }


def bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    return header.replace("Bearer ", "", 1).strip() or None


class AuthService:
    def __init__(self, supabase_client, user_repo):
        self.supabase = supabase_client
        self.user_repo = user_repo
        self.logger = get_logger()

    def register(self, name: str, email: str, phone: Optional[str], password: str,
                 role: Optional[str] = None, organization_id: Optional[str] = None) -> dict:
        if not email or not password:
            raise ApiError("Email and password are required", 400)
        try:
            auth_res = self.supabase.auth.sign_up({"email": email, "password": password})
        except Exception as err:
            raise ApiError(str(err), 400)
        if not auth_res or not auth_res.user:
            raise ApiError("Registration failed", 400)

        user = auth_res.user
        profile = None
        try:
            profile = self.user_repo.insert_profile({
                "id": user.id,
                "email": user.email,
                "name": name or _default_name(user.email),
                "phone": phone or None,
                "role": role or "user",
                "organization_id": organization_id or None,
            })
        except Exception as err:
            # auth user exists already; the profile can be recreated on next login
            log_exception(err, context=f"register profile insert [{user.id}]")

        return {
            "success": True,
            "user": user_view(user, profile, {"name": name, "role": role, "phone": phone, "organizationId": organization_id}),
            "session": session_view(auth_res.session),
        }

    def login(self, email: str, password: str) -> dict:
        if not email or not password:
            raise ApiError("Email and password are required", 400)
        try:
            auth_res = self.supabase.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as err:
            raise ApiError(str(err), 401)
        if not auth_res or not auth_res.user:
            raise ApiError("Authentication failed", 401)

        user = auth_res.user
        profile = self.user_repo.get_profile(user.id)
        if not profile:
            try:
                profile = self.user_repo.insert_profile({
                    "id": user.id,
                    "email": user.email,
                    "name": _default_name(user.email),
                    "role": "user",
                })
            except Exception as err:
                log_exception(err, context=f"login profile insert [{user.id}]")
        return {"success": True, "user": user_view(user, profile), "session": session_view(auth_res.session)}

    def logout(self, authorization: Optional[str]) -> dict:
        if authorization:
            try:
                self.supabase.auth.sign_out()
            except Exception as err:
                raise ApiError(str(err), 400)
        return {"success": True}

    def current_user(self, authorization: Optional[str]) -> dict:
        anonymous = {"user": None, "isAuthenticated": False}
        token = bearer_token(authorization)
        if not token:
            return anonymous
        try:
            res = self.supabase.auth.get_user(token)
        except Exception as err:
            self.logger.info(f"session lookup rejected: {err}")
            return anonymous
        user = getattr(res, "user", None)
        if not user:
            return anonymous
        profile = self.user_repo.get_profile(user.id)
        return {"user": user_view(user, profile), "isAuthenticated": True}
