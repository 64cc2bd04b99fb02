# main.py - AI Posture Monitor (Main Application)

import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor

import cv2

import configure_setting as config
from features import NotificationManager, PostureDataStore
from monitor_session import PostureMonitor, SessionState
from pose_source import LandmarkSource
from posture_core import InitializationError, PersistenceError


WINDOW_NAME = 'AI Posture Monitor'


def print_banner():
    """Print startup banner"""
    print("\n" + "="*60)
    print("🤖 AI POSTURE MONITOR")
    print("="*60)
    print("Real-time posture detection using MediaPipe AI")
    print("Keys: 'p' pause/resume, 'r' recalibrate, 'q' quit")
    print("="*60 + "\n")


def start_session(monitor):
    """
    Start camera + model and begin calibration.

    Returns:
        bool: True if the session is calibrating
    """
    print("📹 Starting camera and pose model...")
    try:
        monitor.start()
    except InitializationError as e:
        print(f"❌ {e}")
        print("   Possible fixes:")
        print("   - Check camera is connected")
        print("   - Close other apps using camera")
        print(f"   - Check network access for the model download ({config.MODEL_URL})")
        return False
    print("🎯 Sit in your normal comfortable posture - calibrating...\n")
    return True


def display_ui(frame, monitor, notifier, fps):
    """
    Draw all UI elements on frame.

    Args:
        frame: OpenCV image to draw on
        monitor: PostureMonitor (state + last status)
        notifier: NotificationManager (indicator colour)
        fps: Current frames per second
    """
    state = monitor.state
    color = notifier.indicator_color

    if state == SessionState.CALIBRATING:
        progress = monitor.context.calibrator.progress * 100
        cv2.putText(frame, f'Calibrating: {progress:.0f}%', (10, 60),
                    cv2.FONT_HERSHEY_SIMPLEX, 1, config.COLOR_GOOD, 2)
    elif state == SessionState.PAUSED:
        cv2.putText(frame, 'Paused', (10, 60),
                    cv2.FONT_HERSHEY_SIMPLEX, 1.2, config.COLOR_IDLE, 3)
    elif monitor.context.last_status is not None:
        result = monitor.context.last_status
        cv2.putText(frame, result.message, (10, 60),
                    cv2.FONT_HERSHEY_SIMPLEX, 1.2, color, 3)

        # Live metrics as % of their limits
        y = 100
        for key, pct in result.limit_percentages(monitor.analyzer.limits).items():
            cv2.putText(frame, f'{key}: {pct:.0f}%', (10, y),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, config.COLOR_TEXT, 1)
            y += 25

    # Status indicator dot (top right)
    cv2.circle(frame, (frame.shape[1] - 25, 25), 12, color, -1)

    # Always show FPS (top, white)
    cv2.putText(frame, f'FPS: {fps:.1f}', (10, 30),
                cv2.FONT_HERSHEY_SIMPLEX, 0.8, config.COLOR_TEXT, 2)


def main_loop(monitor, notifier):
    """
    Process frames until the user quits.

    Returns:
        list: per-frame FPS readings
    """
    fps_list = []

    while True:
        frame_start = time.time()

        image, frame = monitor.source.poll()
        if image is None:
            if monitor.state != SessionState.SETUP:
                print("❌ Camera stopped delivering frames")
                break
            # recalibrate requested: bring the session back up
            if not start_session(monitor):
                break
            continue

        monitor.source.draw_skeleton(image, frame)

        frame_time = time.time() - frame_start
        fps = 1 / frame_time if frame_time > 0 else 0
        fps_list.append(fps)

        display_ui(image, monitor, notifier, fps)
        cv2.imshow(WINDOW_NAME, image)

        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            print("\n👋 Stopping...")
            break
        if key == ord('p'):
            if monitor.toggle_pause():
                print(f"⏯️  {monitor.state.value.capitalize()}")
        elif key == ord('r'):
            print("\n🔄 Recalibrating...")
            monitor.recalibrate()

    return fps_list


def print_summary(store, started_ms, fps_list, session_stats=None, alert_stats=None):
    """Print session performance and posture distribution"""
    if fps_list:
        avg_fps = sum(fps_list) / len(fps_list)
        print(f"\n⚡ Performance: {avg_fps:.1f} FPS average")
        if avg_fps < config.MIN_FPS:
            print(f"⚠️  FPS below minimum ({config.MIN_FPS})")

    if session_stats:
        print(f"🎞️  Frames: {session_stats['frames_received']} received, "
              f"{session_stats['frames_analyzed']} analyzed, "
              f"{session_stats['frames_skipped']} skipped")
        if session_stats['scale_factor'] is not None:
            print(f"📏 Scale factor: {session_stats['scale_factor']:.4f}")
    if alert_stats:
        print(f"🔔 Alerts sent: {alert_stats['total_alerts']}")

    summary = store.summarize_logs(since=started_ms)
    if not summary['entries']:
        print("⚠️  No posture data recorded this session")
        return

    print("\n" + "="*60)
    print("📊 SESSION SUMMARY")
    print("="*60)
    print(f"Checks logged: {summary['entries']}")
    print(f"  GOOD:    {summary['good_count']} ({summary['good_percent']}%)")
    print(f"  WARNING: {summary['warning_count']} ({summary['warning_percent']}%)")
    print(f"  BAD:     {summary['bad_count']} ({summary['bad_percent']}%)")
    print("="*60)


def main():
    """Main entry point"""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print_banner()

    store = PostureDataStore()
    baseline = store.get_baseline()
    if baseline:
        print(f"ℹ️  Previous calibration: scale factor {baseline['scaleFactor']:.4f}")

    notifier = NotificationManager()
    started_ms = int(time.time() * 1000)
    fps_list = []
    session_stats = None

    # single worker keeps sink writes ordered and off the frame path
    with ThreadPoolExecutor(max_workers=1) as executor:
        with PostureMonitor(LandmarkSource(), store=store, notifier=notifier,
                            executor=executor) as monitor:
            if not start_session(monitor):
                print("\n❌ Cannot start without camera and model. Exiting.")
                sys.exit(1)
            try:
                fps_list = main_loop(monitor, notifier)
            except KeyboardInterrupt:
                print("\n👋 Interrupted by user...")
            finally:
                session_stats = monitor.get_stats()
                cv2.destroyAllWindows()

    try:
        store.flush()
    except PersistenceError as e:
        print(f"⚠️  {e}")

    print_summary(store, started_ms, fps_list, session_stats, notifier.get_stats())
    print("\n✅ Session complete. Thank you for using AI Posture Monitor!\n")


if __name__ == "__main__":
    main()
