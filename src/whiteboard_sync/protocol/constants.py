# Message type constants (stringly-typed protocol; canonical list lives here)

# server -> client, once per join
T_HELLO = "hello"

# client -> server (and broadcast to clients)
T_SEG = "seg"
T_PAGEINFO = "pageinfo"

TOOL_PEN = "pen"
TOOL_ERASER = "eraser"

SIZE_MIN = 1
SIZE_MAX = 60
SIZE_DEFAULT = 8

COLOR_DEFAULT = "#111111"
SENDER_DEFAULT = "anon"
