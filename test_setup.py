print("Testing ")

try:
    import cv2
    print(f"✅ OpenCV installed ({cv2.__version__})")
except ImportError:
    print("❌ OpenCV missing")

try:
    import mediapipe
    print("✅ MediaPipe installed")
    if not hasattr(mediapipe, "tasks"):
        print("❌ MediaPipe build has no Tasks API (pose landmarker)")
except ImportError:
    print("❌ MediaPipe missing")

try:
    import numpy
    print("✅ NumPy installed")
except ImportError:
    print("❌ NumPy missing")

try:
    from plyer import notification
    print("✅ Plyer installed")
except ImportError:
    print("❌ Plyer missing")

print("\n🎯 If all show ✅, you're ready to run main.py!")
