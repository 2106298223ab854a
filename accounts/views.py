from django.contrib.auth import get_user_model
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .permissions import RolePermission
from .serializers import UserCreateSerializer, UserSerializer

User = get_user_model()


@extend_schema(tags=["users"])
class UserViewSet(viewsets.ModelViewSet):
    """
    Staff management endpoints.
    Supports CRUD operations with role-based access.
    """

    queryset = User.objects.all().order_by("username")
    serializer_class = UserSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = [User.Roles.OWNER, User.Roles.ADMIN]

    def get_serializer_class(self):
        if self.action == "create":
            return UserCreateSerializer
        return UserSerializer

    @extend_schema(summary="Get current user profile", responses={200: UserSerializer})
    @action(
        detail=False, methods=["get"], permission_classes=[permissions.IsAuthenticated]
    )
    def me(self, request):
        """Get the current authenticated user's profile."""
        return Response(self.get_serializer(request.user).data)

    @extend_schema(
        summary="Update user role",
        request={
            "application/json": {
                "type": "object",
                "properties": {"role": {"type": "string"}},
            }
        },
        responses={200: UserSerializer},
    )
    @action(detail=True, methods=["put"], url_path="role")
    def update_role(self, request, pk=None):
        """Update a user's role (Owner/Admin/Cashier/Seller)."""
        user = self.get_object()
        new_role = request.data.get("role")

        if new_role not in dict(User.Roles.choices):
            return Response(
                {"error": "invalid_role", "message": "Invalid role"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if new_role == User.Roles.OWNER and request.user.role != User.Roles.OWNER:
            return Response(
                {"error": "forbidden", "message": "Only an owner can grant the owner role"},
                status=status.HTTP_403_FORBIDDEN,
            )

        user.role = new_role
        user.save(update_fields=["role"])
        return Response(self.get_serializer(user).data)
