import pygame


def letterbox(screen_size, frame_size, sar: float = 1.0) -> pygame.Rect:
    """Largest rect of the frame's display aspect centred inside the screen."""
    sw, sh = screen_size
    fw, fh = frame_size[0] * sar, frame_size[1]
    k = min(sw / fw, sh / fh)
    rect = pygame.Rect(0, 0, int(fw * k), int(fh * k))
    rect.center = (sw // 2, sh // 2)
    return rect


def render_frame(screen: pygame.Surface, frame, alpha: float = 1.0, sar: float = 1.0):
    """Blit an HxWx3 uint8 frame, scaled and letterboxed, at `alpha`."""
    if frame is None or alpha <= 0.0:
        return
    src = pygame.image.frombuffer(frame.tobytes(), frame.shape[1::-1], "RGB")
    rect = letterbox(screen.get_size(), src.get_size(), sar)
    img = pygame.transform.scale(src, rect.size)
    if alpha < 1.0:
        img.set_alpha(round(alpha * 255))
    screen.blit(img, rect)


def render_surfaces(screen: pygame.Surface, surfaces) -> None:
    """Back-to-front composite of every PlaybackSurface by its layer state."""
    screen.fill((0, 0, 0))
    for s in sorted(surfaces, key=lambda s: s.layer.stack_order):
        render_frame(screen, s.frame(), s.layer.alpha(), s.sar)
