# Bytes de control MLLP / ASTM E1381

# HL7 MLLP
VT = 0x0B  # <VT> start block
FS = 0x1C  # <FS> end block
CR = 0x0D
LF = 0x0A

# ASTM
STX = 0x02
ETX = 0x03
EOT = 0x04
ENQ = 0x05
ACK = 0x06
NAK = 0x15
ETB = 0x17

_NAMES = {
    VT: "VT (HL7 start)",
    FS: "FS (HL7 end)",
    CR: "CR",
    LF: "LF",
    STX: "STX",
    ETX: "ETX",
    EOT: "EOT",
    ENQ: "ENQ",
    ACK: "ACK",
    NAK: "NAK",
    ETB: "ETB",
}


def describe_byte(b: int) -> str:
    if b in _NAMES:
        return _NAMES[b]
    if 32 <= b <= 126:
        return f"'{chr(b)}'"
    return "data"
