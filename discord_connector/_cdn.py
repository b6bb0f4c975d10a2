import enum
from typing import Union

__all__ = (
    'CDN_BASE_URL',
    'ImageSize',
    'ImageFormat',
    'with_size',
    'emoji_url',
    'guild_icon_url',
    'guild_splash_url',
    'application_icon_url',
    'avatar_url',
    'default_avatar_url',
)


CDN_BASE_URL = 'https://cdn.discordapp.com/'


class ImageSize(enum.IntEnum):
    SIZE_16 = 16
    SIZE_32 = 32
    SIZE_64 = 64
    SIZE_128 = 128
    SIZE_256 = 256
    SIZE_512 = 512
    SIZE_1024 = 1024
    SIZE_2048 = 2048


class ImageFormat(str, enum.Enum):
    PNG = 'png'
    JPEG = 'jpeg'
    WEBP = 'webp'
    GIF = 'gif'


Snowflake = Union[int, str]


def _format(value: Union[ImageFormat, str]) -> ImageFormat:
    try:
        return ImageFormat(value)
    except ValueError:
        raise ValueError(f'Unknown image format {value!r}') from None


def _static(value: Union[ImageFormat, str]) -> ImageFormat:
    fmt = _format(value)
    if fmt is ImageFormat.GIF:
        raise ValueError('Format must be png, jpeg or webp')
    return fmt


def with_size(url: str, size: Union[ImageSize, int]) -> str:
    """Append the desired image size to a CDN URL."""
    return f'{url}?size={int(ImageSize(size))}'


def emoji_url(emoji_id: Snowflake, fmt: Union[ImageFormat, str] = ImageFormat.PNG) -> str:
    fmt = _format(fmt)
    if fmt not in (ImageFormat.PNG, ImageFormat.GIF):
        raise ValueError('Format must be png or gif')
    return f'{CDN_BASE_URL}emojis/{emoji_id}.{fmt.value}'


def guild_icon_url(
    guild_id: Snowflake, icon_hash: str, fmt: Union[ImageFormat, str] = ImageFormat.PNG
) -> str:
    return f'{CDN_BASE_URL}icons/{guild_id}/{icon_hash}.{_static(fmt).value}'


def guild_splash_url(
    guild_id: Snowflake, splash_hash: str, fmt: Union[ImageFormat, str] = ImageFormat.PNG
) -> str:
    return f'{CDN_BASE_URL}splashes/{guild_id}/{splash_hash}.{_static(fmt).value}'


def application_icon_url(
    application_id: Snowflake, icon_hash: str, fmt: Union[ImageFormat, str] = ImageFormat.PNG
) -> str:
    return f'{CDN_BASE_URL}app-icons/{application_id}/{icon_hash}.{_static(fmt).value}'


def avatar_url(
    user_id: Snowflake, avatar_hash: str, fmt: Union[ImageFormat, str] = ImageFormat.PNG
) -> str:
    """URL of a user's avatar, any format is allowed."""
    return f'{CDN_BASE_URL}avatars/{user_id}/{avatar_hash}.{_format(fmt).value}'


def default_avatar_url(discriminator: int) -> str:
    """URL of the default avatar shown for users without one."""
    return f'{CDN_BASE_URL}embed/avatars/{discriminator % 5}.png'
