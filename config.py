# ==== Presence Monitoring Configuration ====
# Thresholds below were tuned against a single laptop webcam; treat them as
# starting points. Every consumer accepts overrides.

# ==== Camera ====
CAMERA_INDEX = 0           # 0 = default webcam
FRAME_WIDTH = 640
FRAME_HEIGHT = 480

# ==== Sampling cadence ====
SAMPLE_INTERVAL = 1.0             # seconds between detection ticks (model mode)
HEURISTIC_SAMPLE_INTERVAL = 0.8   # seconds between detection ticks (heuristic mode)

# ==== Model loading ====
FACE_DETECTION_CONFIDENCE = 0.4   # MediaPipe min_detection_confidence
FACE_MESH_MAX_FACES = 4
YOLO_MODEL = "yolov8n.pt"
YOLO_CONFIDENCE = 0.45
MODEL_LOAD_RETRIES = 2            # retries after the first attempt
MODEL_LOAD_TIMEOUT = 15.0         # seconds per attempt
MODEL_RETRY_DELAY = 3.0           # seconds between attempts

# Object labels that count as disallowed devices (COCO names, matched as substrings)
DISALLOWED_DEVICE_LABELS = [
    "cell phone", "phone", "laptop", "tablet", "tv", "monitor",
    "keyboard", "remote", "mouse", "computer", "electronic device",
]

# ==== Session history ====
FRAME_HISTORY_SIZE = 100   # retained FrameRecords (ring buffer)
BLINK_HISTORY_SIZE = 50    # retained blink timestamps (ring buffer)

# ==== Feature thresholds ====
EAR_BLINK_THRESHOLD = 0.25        # EAR below this = eyes closed
YAW_RANGE = 60.0                  # yaw clamp (degrees)
PITCH_RANGE = 40.0                # pitch clamp (degrees)
ROLL_RANGE = 30.0                 # roll clamp (degrees)

# ==== Violation predicates ====
LOOKING_AWAY_YAW = 15.0           # |yaw| above this = looking away
LOOKING_AWAY_PITCH_MIN = 5.0      # pitch outside [min, max] = looking away
LOOKING_AWAY_PITCH_MAX = 20.0
MIN_FACE_SIZE = 200.0             # sqrt(w*h) below this = obscured / too far
SUSPICIOUS_MOVEMENT_PIXELS = 50.0 # centroid jump between consecutive frames

# Violation types
FACE_NOT_DETECTED = "face_not_detected"
MULTIPLE_FACES = "multiple_faces"
LOOKING_AWAY = "looking_away"
FACE_OBSCURED = "face_obscured"
SUSPICIOUS_MOVEMENT = "suspicious_movement"
ELECTRONIC_DEVICE = "electronic_device"

VIOLATION_TYPES = [
    FACE_NOT_DETECTED, MULTIPLE_FACES, LOOKING_AWAY,
    FACE_OBSCURED, SUSPICIOUS_MOVEMENT, ELECTRONIC_DEVICE,
]

# Per-type debounce rules: severity, consecutive confirmations, cooldown seconds
VIOLATION_RULES = {
    FACE_NOT_DETECTED:   {"severity": "high",   "confirmations": 2, "cooldown": 5.0},
    MULTIPLE_FACES:      {"severity": "high",   "confirmations": 3, "cooldown": 8.0},
    LOOKING_AWAY:        {"severity": "medium", "confirmations": 1, "cooldown": 5.0},
    FACE_OBSCURED:       {"severity": "medium", "confirmations": 1, "cooldown": 5.0},
    SUSPICIOUS_MOVEMENT: {"severity": "low",    "confirmations": 5, "cooldown": 10.0},
    ELECTRONIC_DEVICE:   {"severity": "high",   "confirmations": 3, "cooldown": 10.0},
}

# Heuristic mode has no pose or reliable face size, and its device signal is noisier
HEURISTIC_RULE_OVERRIDES = {
    LOOKING_AWAY:     {"enabled": False},
    FACE_OBSCURED:    {"enabled": False},
    ELECTRONIC_DEVICE: {"severity": "medium", "confirmations": 4},
}

# User-facing messages per violation type and severity
VIOLATION_MESSAGES = {
    FACE_NOT_DETECTED: {
        "high": "Face not detected - Please position yourself in front of the camera",
        "medium": "Face partially visible",
        "low": "Face detection unstable",
    },
    MULTIPLE_FACES: {
        "high": "Multiple faces detected - Ensure you are alone",
        "medium": "Additional person detected",
        "low": "Multiple face regions detected",
    },
    LOOKING_AWAY: {
        "high": "Looking away from camera",
        "medium": "Please look at the camera",
        "low": "Head movement detected",
    },
    FACE_OBSCURED: {
        "high": "Face obscured or too far from camera",
        "medium": "Move closer to the camera",
        "low": "Face partially obscured",
    },
    SUSPICIOUS_MOVEMENT: {
        "high": "Excessive movement detected",
        "medium": "Please remain still",
        "low": "Movement detected",
    },
    ELECTRONIC_DEVICE: {
        "high": "Electronic device detected - Remove devices from view",
        "medium": "Possible electronic device in view",
        "low": "Bright static object detected",
    },
}

# ==== Heuristic detector (grid pixel analysis) ====
HEURISTIC_GRID_SIZE = 12          # cells per side
HEURISTIC_SAMPLE_RATIO = 0.6      # central share of the frame analysed
HEURISTIC_FACE_THRESHOLD = 15.0   # weighted brightness contrast for a face cell
HEURISTIC_CENTER_WEIGHT = 1.5     # falloff of the centre preference
HEURISTIC_REGION_DISTANCE = 4.0   # grid cells between distinct face regions
HEURISTIC_BRIGHT_THRESHOLD = 220  # device spot brightness
HEURISTIC_DEVICE_MOTION = 3       # device spot max per-cell motion
HEURISTIC_DEVICE_SPOTS = 4        # spots above this = device present
HEURISTIC_MIN_BRIGHTNESS = 15
HEURISTIC_MAX_BRIGHTNESS = 245
HEURISTIC_MOTION_PRESENCE = 0.8   # average motion that counts as presence early on
HEURISTIC_WARMUP_CHECKS = 10      # checks during which motion alone means presence

# ==== Report recommendations ====
RECOMMEND_MIN_DETECTION_RATE = 90.0
RECOMMEND_MAX_YAW = 20.0
RECOMMEND_MAX_PITCH = 15.0
RECOMMEND_MIN_BLINK_RATE = 10.0
RECOMMEND_MAX_BLINK_RATE = 30.0
RECOMMEND_MIN_CONFIDENCE = 0.7

# ==== Database ====
DB_PATH = "monitoring.sqlite"
