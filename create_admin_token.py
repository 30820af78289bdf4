import sys

from app.core.enums import UserRole
from app.core.security import create_access_token


def main():
    if len(sys.argv) < 2:
        print("Usage: python create_admin_token.py <user_id> [expires_minutes]")
        sys.exit(1)

    user_id = sys.argv[1]
    expires = int(sys.argv[2]) if len(sys.argv) > 2 else None

    if not user_id:
        print("Error: user_id cannot be empty")
        sys.exit(1)

    print(create_access_token(user_id, UserRole.ADMIN.value, expires))


if __name__ == "__main__":
    main()
