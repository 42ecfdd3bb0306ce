from helaloans.schemas.user_schemas import UserCreate, ProfileUpdate, UserResponse, Token
