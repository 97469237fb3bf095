from rest_framework.permissions import AllowAny
from rest_framework.renderers import JSONOpenAPIRenderer
from rest_framework.response import Response
from rest_framework.schemas.openapi import AutoSchema
from rest_framework.schemas.openapi import SchemaGenerator
from rest_framework.views import APIView


class MentorBridgeAutoSchema(AutoSchema):
    def get_operation_id(self, path, method):
        base = super().get_operation_id(path, method)
        return f"{base}{method.capitalize()}"


PUBLIC_PATHS = {
    "/api/login/",
    "/api/token/refresh/",
    "/api/schema/",
}

PATH_TAGS = (
    ("/api/login/", "Auth"),
    ("/api/token/", "Auth"),
    ("/api/mentors/", "Directory"),
    ("/api/connections/", "Connections"),
    ("/api/sessions/", "Sessions"),
    ("/api/notifications/", "Notifications"),
    ("/api/messages/", "Messages"),
)

TAGS = [
    {"name": "Auth", "description": "Login and token refresh."},
    {"name": "Directory", "description": "Approved mentor listing and profiles."},
    {"name": "Connections", "description": "Mentee requests and mentor decisions."},
    {"name": "Sessions", "description": "Proposing, approving and completing sessions."},
    {"name": "Notifications", "description": "Per-user notification inbox."},
    {"name": "Messages", "description": "Messages exchanged within a connection."},
    {"name": "General", "description": "Other endpoints."},
]
TAG_ORDER = {tag["name"]: index for index, tag in enumerate(TAGS)}


def tag_for_path(path: str) -> str:
    for prefix, tag in PATH_TAGS:
        if path.startswith(prefix):
            return tag
    return "General"


class MentorBridgeSchemaView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    renderer_classes = [JSONOpenAPIRenderer]

    def get(self, request, *args, **kwargs):
        generator = SchemaGenerator(
            title="MentorBridge API",
            description="Connections, sessions and messaging between mentors and mentees.",
            version="1.0.0",
        )
        schema = generator.get_schema(request=request, public=True)
        if not schema:
            return Response({})

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["HTTPBearer"] = {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
        schema["tags"] = TAGS

        paths = schema.get("paths", {})
        path_tags = {path: tag_for_path(path) for path in paths}
        for path, operations in paths.items():
            for method, operation in operations.items():
                if method.lower() not in {"get", "post", "put", "patch", "delete"}:
                    continue
                operation["tags"] = [path_tags[path]]
                if path in PUBLIC_PATHS:
                    operation.pop("security", None)
                else:
                    operation["security"] = [{"HTTPBearer": []}]

        schema["paths"] = {
            path: paths[path]
            for path in sorted(paths, key=lambda item: (TAG_ORDER.get(path_tags[item], 99), item))
        }
        return Response(schema)
