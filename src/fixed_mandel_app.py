import sys
import numpy as np
from PyQt6.QtWidgets import QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QLabel, QLineEdit, QPushButton, QComboBox
from PyQt6.QtWidgets import QFileDialog, QProgressBar
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtCore import Qt, QThread, pyqtSignal
from PyQt6.QtGui import QIntValidator

from fixed_mandel import MAX_INTENSITY, compute_iterations, map_intensities, plane_coordinate
from fixed_mandel_render import HEIGHT, OFFSET_I, OFFSET_R, PRESETS, WIDTH, write_pgm

# 4-bit intensity -> 8-bit gray
GRAY_STEP = 255 // MAX_INTENSITY


def intensity_to_qimage(intensities):
    gray = np.ascontiguousarray(intensities.astype(np.uint8) * GRAY_STEP)
    height, width = gray.shape
    image = QImage(gray.tobytes(), width, height, width, QImage.Format.Format_Grayscale8)
    return image.copy()  # detach from the byte buffer


class FractalWorker(QThread):
    progress_changed = pyqtSignal(int)
    result_ready = pyqtSignal(np.ndarray)

    def __init__(self, width, height, scale, offset_r, offset_i, max_iter, divisor):
        super().__init__()
        self.width = width
        self.height = height
        self.scale = scale
        self.offset_r = offset_r
        self.offset_i = offset_i
        self.max_iter = max_iter
        self.divisor = divisor

    def run(self):
        counts = compute_iterations(self.width, self.height, self.scale,
                                    self.offset_r, self.offset_i, self.max_iter,
                                    progress=self.progress_changed.emit)
        self.result_ready.emit(map_intensities(counts, self.divisor))


class FractalWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Fixed-Point Mandelbrot Explorer")
        self.current_width = WIDTH
        self.current_height = HEIGHT
        self.current_scale = 1
        self.current_offset_r = OFFSET_R
        self.current_offset_i = OFFSET_I
        self.current_intensities = None
        self.is_rendering = False
        self.init_ui()

    def init_ui(self):
        self.setFixedSize(860, 760)

        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout()
        main_layout.setAlignment(Qt.AlignmentFlag.AlignCenter)
        central_widget.setLayout(main_layout)

        # Input fields
        input_layout = QHBoxLayout()
        input_layout.setAlignment(Qt.AlignmentFlag.AlignLeft)

        self.width_input = QLineEdit(str(WIDTH))
        self.height_input = QLineEdit(str(HEIGHT))
        self.scale_input = QLineEdit("1")
        self.offset_r_input = QLineEdit(str(OFFSET_R))
        self.offset_i_input = QLineEdit(str(OFFSET_I))
        self.max_iter_input = QLineEdit("64")
        self.divisor_input = QLineEdit("4")

        self.width_input.setValidator(QIntValidator(1, 4000))
        self.height_input.setValidator(QIntValidator(1, 4000))
        self.scale_input.setValidator(QIntValidator(1, 4096))
        self.offset_r_input.setValidator(QIntValidator(-1 << 20, 1 << 20))
        self.offset_i_input.setValidator(QIntValidator(-1 << 20, 1 << 20))
        self.max_iter_input.setValidator(QIntValidator(1, 1 << 20))
        self.divisor_input.setValidator(QIntValidator(0, 1 << 20))

        input_layout.addWidget(QLabel("Width:"))
        input_layout.addWidget(self.width_input)
        input_layout.addWidget(QLabel("Height:"))
        input_layout.addWidget(self.height_input)
        input_layout.addWidget(QLabel("Scale:"))
        input_layout.addWidget(self.scale_input)
        input_layout.addWidget(QLabel("Offset R:"))
        input_layout.addWidget(self.offset_r_input)
        input_layout.addWidget(QLabel("Offset I:"))
        input_layout.addWidget(self.offset_i_input)
        input_layout.addWidget(QLabel("Max Iter:"))
        input_layout.addWidget(self.max_iter_input)
        input_layout.addWidget(QLabel("Divisor:"))
        input_layout.addWidget(self.divisor_input)

        main_layout.addLayout(input_layout)

        # Preset selection
        preset_layout = QHBoxLayout()
        self.preset_combo = QComboBox()
        self.preset_combo.addItem("Custom")
        self.preset_combo.addItems([p.filename for p in PRESETS])
        self.preset_combo.currentTextChanged.connect(self.apply_preset)
        preset_layout.addWidget(QLabel("Preset:"))
        preset_layout.addWidget(self.preset_combo)
        main_layout.addLayout(preset_layout)

        # Plot button
        self.plot_button = QPushButton("Render Fractal")
        self.plot_button.clicked.connect(self.plot_fractal)
        main_layout.addWidget(self.plot_button)

        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        self.progress_bar.setValue(0)
        self.progress_bar.setEnabled(False)
        main_layout.addWidget(self.progress_bar)

        self.coord_label = QLabel("R: -, I: -")
        main_layout.addWidget(self.coord_label)

        self.image_label = QLabel()
        self.image_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.image_label.setFixedSize(800, 600)
        self.image_label.setMouseTracking(True)
        self.image_label.mouseMoveEvent = self.mouse_move_event
        main_layout.addWidget(self.image_label)

        self.save_button = QPushButton("Save PGM")
        self.save_button.clicked.connect(self.save_image)
        main_layout.addWidget(self.save_button)

    def apply_preset(self, name):
        for preset in PRESETS:
            if preset.filename == name:
                self.width_input.setText(str(WIDTH))
                self.height_input.setText(str(HEIGHT))
                self.scale_input.setText(str(preset.scale))
                self.offset_r_input.setText(str(OFFSET_R))
                self.offset_i_input.setText(str(OFFSET_I))
                self.max_iter_input.setText(str(preset.max_iterations))
                self.divisor_input.setText(str(preset.divisor))
                return

    def mouse_move_event(self, event):
        if not hasattr(self, 'scaled_pixmap') or self.scaled_pixmap.isNull(): return

        pos = event.position()
        pixmap_rect = self.scaled_pixmap.rect()
        pixmap_rect.moveCenter(self.image_label.rect().center())

        if pixmap_rect.contains(int(pos.x()), int(pos.y())):
            x = int((pos.x() - pixmap_rect.left()) * self.current_width / pixmap_rect.width())
            y = int((pos.y() - pixmap_rect.top()) * self.current_height / pixmap_rect.height())
            cr, ci = plane_coordinate(self.current_scale, x, y,
                                      self.current_offset_r, self.current_offset_i)
            self.coord_label.setText(f"px: ({x}, {y})  R: {cr}, I: {ci}")
        else:
            self.coord_label.setText("R: -, I: -")

    def plot_fractal(self):
        if self.is_rendering: return
        self.is_rendering = True
        self.plot_button.setEnabled(False)

        try:
            width = int(self.width_input.text())
            height = int(self.height_input.text())
            scale = int(self.scale_input.text())
            offset_r = int(self.offset_r_input.text())
            offset_i = int(self.offset_i_input.text())
            max_iter = int(self.max_iter_input.text())
            divisor = int(self.divisor_input.text())
            if width <= 0 or height <= 0 or scale <= 0 or max_iter <= 0 or divisor < 0:
                raise ValueError
        except ValueError:
            self.image_label.setText("Invalid input values")
            self.is_rendering = False
            self.plot_button.setEnabled(True)
            return

        self.current_width = width
        self.current_height = height
        self.current_scale = scale
        self.current_offset_r = offset_r
        self.current_offset_i = offset_i

        self.progress_bar.setValue(0)
        self.progress_bar.setEnabled(True)

        self.worker = FractalWorker(width, height, scale, offset_r, offset_i, max_iter, divisor)
        self.worker.progress_changed.connect(self.progress_bar.setValue)
        self.worker.result_ready.connect(self.display_fractal)
        self.worker.finished.connect(self.on_render_finished)
        self.worker.start()

    def display_fractal(self, intensities):
        self.current_intensities = intensities
        self.current_pixmap = QPixmap.fromImage(intensity_to_qimage(intensities))
        self.scaled_pixmap = self.current_pixmap.scaled(
            self.image_label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.FastTransformation
        )
        self.image_label.setPixmap(self.scaled_pixmap)

        self.progress_bar.setValue(100)
        self.progress_bar.setEnabled(False)

    def on_render_finished(self):
        self.is_rendering = False
        self.plot_button.setEnabled(True)

    def save_image(self):
        if self.current_intensities is None:
            self.coord_label.setText("No image to save.")
            return

        filename, _ = QFileDialog.getSaveFileName(
            self, "Save Fractal Image", "fractal.pgm", "PGM Files (*.pgm)"
        )

        if filename:
            if not filename.lower().endswith('.pgm'):
                filename += '.pgm'
            try:
                with open(filename, "w") as f:
                    write_pgm(f, self.current_intensities)
            except OSError as e:
                self.coord_label.setText(f"Failed to save image: {e}")
                return
            self.coord_label.setText(f"Saved: {filename}")


def main():
    app = QApplication(sys.argv)
    window = FractalWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
